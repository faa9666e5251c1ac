import os

import pytest

from revalidate import RevalidationBus
from storage import BlobStoreError, LocalBlobStore


def test_save_then_delete(tmp_path):
    store = LocalBlobStore(root=str(tmp_path), base_url="https://cdn.test/")

    url = store.save("../My Photo.png", b"abc")

    assert url.startswith("https://cdn.test/uploads/")
    assert url.endswith("My_Photo.png")
    filename = url.rsplit("/", 1)[1]
    assert (tmp_path / filename).read_bytes() == b"abc"

    store.delete(url)
    assert not os.listdir(tmp_path)


def test_delete_unknown_or_foreign_urls(tmp_path):
    store = LocalBlobStore(root=str(tmp_path))

    with pytest.raises(BlobStoreError):
        store.delete("/uploads/missing.png")
    with pytest.raises(BlobStoreError):
        store.delete("https://elsewhere.test/photo.png")
    with pytest.raises(BlobStoreError):
        store.delete("/uploads/../secrets.txt")


def test_revalidation_history_keeps_latest_paths():
    bus = RevalidationBus(history=2)

    for path in ("/a", "/b", "/c"):
        bus.revalidate(path)

    recent = bus.recent()
    assert [r["path"] for r in recent] == ["/b", "/c"]
    assert recent[0]["at"] <= recent[1]["at"]

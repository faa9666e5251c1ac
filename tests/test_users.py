from schemas import OrderCreate
from user_service import UserService


def test_users_carry_live_order_counts(users, orders, add_user, add_product):
    alice = add_user("auth|alice", number="+1555")
    add_user("auth|bob", offset=1)
    mug = add_product("Mug")
    for _ in range(3):
        orders.create_order(OrderCreate(user_id=alice, product_id=mug, quantity=1, price="1"))

    listing = users.list_users()

    assert listing.ok
    counts = {u.id: u.order_count for u in listing.users}
    assert counts == {"auth|alice": 3, "auth|bob": 0}


def test_paginated_users(users, add_user):
    for i in range(5):
        add_user(f"auth|{i}", number=f"+1555000{i}", offset=i)

    page = users.list_users_paginated(page=2, page_size=2)

    assert [u.id for u in page.users] == ["auth|2", "auth|3"]
    assert (page.total_count, page.total_pages, page.current_page) == (5, 3, 2)


def test_paginated_search_on_contact_and_address(users, add_user):
    add_user("auth|a", number="+15550001", address="Harbour Road")
    add_user("auth|b", number="+15550002", address="Mill Lane", offset=1)

    assert [u.id for u in users.list_users_paginated(search="harbour").users] == ["auth|a"]
    assert [u.id for u in users.list_users_paginated(search="0002").users] == ["auth|b"]
    assert users.list_users_paginated(search="  ").total_count == 2


def test_paginated_search_does_not_match_user_id(users, add_user):
    add_user("auth|harbour", number="+15550001", address="Mill Lane")

    page = users.list_users_paginated(search="harbour")

    assert (page.users, page.total_count) == ([], 0)


def test_numeric_contact_fields_read_as_text(users, db):
    db["user"].insert_one({"_id": "auth|legacy", "number": 15550009, "address": 12})

    listing = users.list_users()

    assert listing.ok
    assert (listing.users[0].number, listing.users[0].address) == ("15550009", "12")


def test_user_reads_fail_soft(broken_db):
    service = UserService(broken_db)

    assert service.list_users().users == []
    assert not service.list_users().ok
    page = service.list_users_paginated()
    assert (page.users, page.total_count, page.total_pages) == ([], 0, 0)

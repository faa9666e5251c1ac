"""
Admin sign-in.

A single operator account comes from ADMIN_USER / ADMIN_PASS. Successful
logins get an opaque bearer token stored in the "admin_session" collection.
"""

import os
import secrets
from datetime import timedelta, timezone
from typing import Optional

from pymongo.database import Database

from database import now

ADMIN_USER = os.getenv("ADMIN_USER")
ADMIN_PASS = os.getenv("ADMIN_PASS")
SESSION_DAYS = int(os.getenv("SESSION_DAYS", "1"))


def validate_credentials(username: str, password: str) -> bool:
    if not ADMIN_USER or not ADMIN_PASS:
        return False
    user_ok = secrets.compare_digest(username.encode(), ADMIN_USER.encode())
    pass_ok = secrets.compare_digest(password.encode(), ADMIN_PASS.encode())
    return user_ok and pass_ok


def create_session(database: Database, username: str) -> str:
    token = secrets.token_urlsafe(32)
    database["admin_session"].insert_one({
        "token": token,
        "username": username,
        "created_at": now(),
        "expires_at": now() + timedelta(days=SESSION_DAYS),
    })
    return token


def get_session(database: Database, token: str) -> Optional[dict]:
    session = database["admin_session"].find_one({"token": token})
    if not session:
        return None
    expires = session.get("expires_at")
    if expires is None:
        return None
    # pymongo hands back naive UTC datetimes
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    if expires <= now():
        database["admin_session"].delete_one({"_id": session["_id"]})
        return None
    return session


def end_session(database: Database, token: str) -> None:
    database["admin_session"].delete_one({"token": token})

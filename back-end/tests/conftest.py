"""
Global test configuration and fixtures
"""
import os
import sys
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

# Add the back-end directory to the Python path
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from auth import Caller  # noqa: E402
from fake_firestore import FakeFirestore  # noqa: E402
from firebase import AppContext  # noqa: E402
from mailer import Mailer  # noqa: E402

BOARD_ID = "B1"
BOARD_NAME = "Launch Plan"

# ID token -> decoded claims, as firebase_admin.auth.verify_id_token would return them
TOKENS = {
    "alice-token": {"uid": "alice", "email": "alice@example.com", "email_verified": True},
    "bob-token": {"uid": "bob", "email": "bob@example.com", "email_verified": True},
    "carol-token": {"uid": "carol", "email": "carol@example.com", "email_verified": True},
    "dave-token": {"uid": "dave", "email": "dave@example.com", "email_verified": True},
    "unverified-token": {"uid": "erin", "email": "erin@example.com", "email_verified": False},
}


def fake_verify_token(id_token):
    if id_token not in TOKENS:
        raise ValueError("Token could not be decoded")
    return dict(TOKENS[id_token])


@pytest.fixture
def db():
    """Fake Firestore seeded with one board owned by alice and three user profiles"""
    fake = FakeFirestore()
    created = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
    for uid in ("alice", "bob", "carol"):
        fake.seed(f"users/{uid}", {"email": f"{uid}@example.com", "displayName": uid.title()})
    fake.seed(f"boards/{BOARD_ID}", {
        "name": BOARD_NAME,
        "icon": "Briefcase",
        "ownerId": "alice",
        "createdAt": created,
        "members": {"alice": "owner"},
        "sharedWith": {},
    })
    fake.seed(f"users/alice/boardMemberships/{BOARD_ID}", {
        "boardId": BOARD_ID,
        "boardName": BOARD_NAME,
        "role": "owner",
        "joinedAt": created,
    })
    return fake


@pytest.fixture
def shared_db(db):
    """Same as db, with bob already on the board as an editor"""
    db.seed(f"boards/{BOARD_ID}", {
        **db.data(f"boards/{BOARD_ID}"),
        "members": {"alice": "owner", "bob": "editor"},
        "sharedWith": {"bob": "editor"},
    })
    db.seed(f"users/bob/boardMemberships/{BOARD_ID}", {
        "boardId": BOARD_ID,
        "boardName": BOARD_NAME,
        "role": "editor",
        "joinedAt": datetime(2024, 5, 2, tzinfo=timezone.utc),
    })
    return db


@pytest.fixture
def mailer():
    mock_mailer = Mock(spec=Mailer)
    mock_mailer.send_invitation.return_value = True
    return mock_mailer


@pytest.fixture
def ctx(db, mailer):
    return AppContext(db=db, mailer=mailer, verify_token=fake_verify_token, require_verified_email=True)


@pytest.fixture
def shared_ctx(shared_db, mailer):
    return AppContext(db=shared_db, mailer=mailer, verify_token=fake_verify_token, require_verified_email=True)


def caller_for(token):
    claims = TOKENS[token]
    return Caller.from_claims(claims["uid"], claims)


@pytest.fixture
def alice():
    return caller_for("alice-token")


@pytest.fixture
def bob():
    return caller_for("bob-token")


@pytest.fixture
def carol():
    return caller_for("carol-token")


@pytest.fixture
def dave():
    """Has a valid token but no profile document"""
    return caller_for("dave-token")

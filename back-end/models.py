"""
Firestore layout and document shapes for boards, memberships and invitations.

  boards/{boardId}                              Board
  users/{uid}                                   user profile (email, displayName)
  users/{uid}/boardMemberships/{boardId}        Membership Record
  boardInvitations/{invitationId}               Invitation (append-only ledger)
  pendingInvitationKeys/{key}                   one per outstanding (board, email) pair
  notifications/{id}                            in-app notifications
"""
import hashlib
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

BOARDS = "boards"
USERS = "users"
BOARD_MEMBERSHIPS = "boardMemberships"
BOARD_INVITATIONS = "boardInvitations"
PENDING_INVITATION_KEYS = "pendingInvitationKeys"
NOTIFICATIONS = "notifications"

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DEFAULT_BOARD_ICON = "KanbanSquare"
BOARD_ICONS = [
    "KanbanSquare",
    "LayoutGrid",
    "Briefcase",
    "Heart",
    "Home",
    "Plane",
    "ShoppingCart",
    "Book",
    "Code",
    "MessageSquare",
    "Users",
    "Calendar",
]


class BoardRole(str, Enum):
    owner = "owner"
    editor = "editor"
    viewer = "viewer"


SHAREABLE_ROLES = (BoardRole.editor.value, BoardRole.viewer.value)


class InvitationStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"
    # TODO: move stale pending invitations here once an expiry policy (sweep or check-on-read) is chosen
    expired = "expired"


def now_utc():
    return datetime.now(timezone.utc)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email or ""))


def pending_invitation_key(board_id: str, recipient_email: str) -> str:
    """Deterministic document ID for the single pending invitation of a (board, email) pair."""
    raw = f"{board_id}\n{normalize_email(recipient_email)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def new_board(name: str, icon: str, owner_id: str) -> Dict[str, Any]:
    return {
        "name": name,
        "icon": icon or DEFAULT_BOARD_ICON,
        "ownerId": owner_id,
        "createdAt": now_utc(),
        "members": {owner_id: BoardRole.owner.value},
        "sharedWith": {},
    }


def new_membership(board_id: str, board_name: str, role: str) -> Dict[str, Any]:
    return {
        "boardId": board_id,
        "boardName": board_name,
        "role": role,
        "joinedAt": now_utc(),
    }


def new_invitation(
    board_id: str,
    board_name: str,
    sender_uid: str,
    sender_email: str,
    recipient_email: str,
    role: str,
    recipient_uid: Optional[str] = None,
) -> Dict[str, Any]:
    invitation = {
        "boardId": board_id,
        "boardName": board_name,
        "senderUid": sender_uid,
        "senderEmail": sender_email,
        "recipientEmail": recipient_email,
        "role": role,
        "status": InvitationStatus.pending.value,
        "createdAt": now_utc(),
    }
    if recipient_uid:
        invitation["recipientUid"] = recipient_uid
    return invitation


def _to_iso(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def serialize_doc(doc_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a Firestore document into a JSON-safe dict with its id."""
    out = {k: _to_iso(v) for k, v in (data or {}).items()}
    out["id"] = doc_id
    return out

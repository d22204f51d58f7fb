"""
Board invitation workflow.

An invitation moves pending -> accepted | declined. Recipients are addressed
by email because they may not have an account yet. While an invitation is
pending, a document keyed by hash(boardId, email) exists in
pendingInvitationKeys; it is created with create-if-absent in the same batch
as the invitation, so two concurrent shares of the same board with the same
address cannot both succeed.
"""
from typing import Optional

from firebase_functions import logger
from flask import Blueprint, g, jsonify, request
from google.api_core import exceptions as gexc
from google.cloud import firestore as gcf

import errors
from auth import Caller, get_context, require_auth, require_caller, require_verified_email
from boards import load_board, membership_ref
from mailer import notify_invitation
from models import (
    BOARD_INVITATIONS,
    PENDING_INVITATION_KEYS,
    SHAREABLE_ROLES,
    USERS,
    BoardRole,
    InvitationStatus,
    is_valid_email,
    new_invitation,
    new_membership,
    normalize_email,
    now_utc,
    pending_invitation_key,
    serialize_doc,
)
from notifications import add_notification, invitation_response_notification
from schemas import ActionResponse, InvitationActionRequest, ShareBoardRequest, parse

invitations_bp = Blueprint("invitations", __name__)

# bounded retry when a pending key outlived its invitation
MAX_STALE_KEY_RETRIES = 1


def _find_uid_by_email(db, email: str) -> Optional[str]:
    query = db.collection(USERS).where(filter=gcf.FieldFilter("email", "==", email)).limit(1)
    for doc in query.stream():
        return doc.id
    return None


def _has_pending_invitation(db, board_id: str, recipient_email: str) -> bool:
    query = (
        db.collection(BOARD_INVITATIONS)
        .where(filter=gcf.FieldFilter("boardId", "==", board_id))
        .where(filter=gcf.FieldFilter("recipientEmail", "==", recipient_email))
        .where(filter=gcf.FieldFilter("status", "==", InvitationStatus.pending.value))
        .limit(1)
    )
    return any(True for _ in query.stream())


def _release_stale_key(db, key_ref) -> bool:
    """Delete a pending key whose invitation is no longer pending. Returns True if released."""
    key_snap = key_ref.get()
    if not key_snap.exists:
        return True
    invitation_id = (key_snap.to_dict() or {}).get("invitationId")
    if invitation_id:
        invitation_snap = db.collection(BOARD_INVITATIONS).document(invitation_id).get()
        if invitation_snap.exists and (invitation_snap.to_dict() or {}).get("status") == InvitationStatus.pending.value:
            return False
    logger.warn(f"[invitations.share_board] releasing stale pending key {key_ref.id} (invitation={invitation_id})")
    try:
        key_ref.delete(option=db.write_option(last_update_time=key_snap.update_time))
    except gexc.FailedPrecondition:
        # another share replaced the key after it was read
        return False
    return True


def _caller_email(ctx, caller: Caller) -> Optional[str]:
    """The caller's email if it can be trusted for recipient matching."""
    if ctx.require_verified_email and caller.email_verified is False:
        return None
    return caller.email


def _load_own_invitation(ctx, caller: Caller, invitation_id: str):
    """Return (ref, data, update_time) for an invitation addressed to the caller.

    A missing invitation and someone else's invitation are reported the same way.
    The update time is the precondition for the status transition.
    """
    invitation_ref = ctx.db.collection(BOARD_INVITATIONS).document(invitation_id)
    snap = invitation_ref.get()
    invitation = snap.to_dict() if snap.exists else None
    email = _caller_email(ctx, caller)
    if not invitation or not email or normalize_email(invitation.get("recipientEmail")) != email:
        raise errors.not_found("Invitation not found or you are not the recipient.")
    return invitation_ref, invitation, snap.update_time


def _current_status(invitation_ref) -> Optional[str]:
    snap = invitation_ref.get()
    return (snap.to_dict() or {}).get("status") if snap.exists else None


@errors.guard("shareBoard")
def share_board(ctx, caller: Optional[Caller], data) -> dict:
    caller = require_caller(caller, "Only authenticated users can share boards.")
    sender_email = require_verified_email(caller, ctx.require_verified_email)
    req = parse(ShareBoardRequest, data)

    role = req.role.lower()
    if role == BoardRole.owner.value:
        raise errors.invalid_argument("Cannot assign owner role via sharing.")
    if role not in SHAREABLE_ROLES:
        raise errors.invalid_argument(f"Role must be one of: {', '.join(SHAREABLE_ROLES)}")

    recipient_email = normalize_email(req.recipientEmail)
    if not is_valid_email(recipient_email):
        raise errors.invalid_argument("Invalid email format provided.")

    db = ctx.db
    board_id = req.boardId
    _, board = load_board(db, board_id)
    if board.get("ownerId") != caller.uid:
        raise errors.permission_denied("Only the board owner can share the board.")

    if sender_email == recipient_email:
        raise errors.invalid_argument("Cannot share a board with yourself.")

    recipient_uid = _find_uid_by_email(db, recipient_email)
    if recipient_uid and (
        recipient_uid in (board.get("members") or {})
        or membership_ref(db, recipient_uid, board_id).get().exists
    ):
        raise errors.already_exists(f"User with email {recipient_email} is already a member of this board.")

    already_sent = f"An invitation has already been sent to {recipient_email}."
    if _has_pending_invitation(db, board_id, recipient_email):
        raise errors.already_exists(already_sent)

    invitation = new_invitation(
        board_id=board_id,
        board_name=board.get("name", ""),
        sender_uid=caller.uid,
        sender_email=sender_email,
        recipient_email=recipient_email,
        role=role,
        recipient_uid=recipient_uid,
    )
    key_ref = db.collection(PENDING_INVITATION_KEYS).document(pending_invitation_key(board_id, recipient_email))

    for attempt in range(MAX_STALE_KEY_RETRIES + 1):
        invitation_ref = db.collection(BOARD_INVITATIONS).document()
        batch = db.batch()
        batch.create(key_ref, {
            "boardId": board_id,
            "recipientEmail": recipient_email,
            "invitationId": invitation_ref.id,
            "createdAt": invitation["createdAt"],
        })
        batch.set(invitation_ref, invitation)
        try:
            batch.commit()
            break
        except gexc.AlreadyExists as e:
            if attempt < MAX_STALE_KEY_RETRIES and _release_stale_key(db, key_ref):
                continue
            raise errors.already_exists(already_sent) from e

    logger.info(f"[invitations.share_board] invitation={invitation_ref.id} board={board_id} to={recipient_email} role={role}")

    notify_invitation(ctx.mailer, recipient_email, invitation["boardName"], sender_email, role)

    return ActionResponse(message=f"Invitation sent to {recipient_email}.").model_dump()


@errors.guard("acceptBoardInvitation")
def accept_board_invitation(ctx, caller: Optional[Caller], data) -> dict:
    caller = require_caller(caller, "You must be logged in to accept an invitation.")
    req = parse(InvitationActionRequest, data)
    db = ctx.db

    invitation_ref, invitation, read_at = _load_own_invitation(ctx, caller, req.invitationId)
    status = invitation.get("status")
    if status != InvitationStatus.pending.value:
        raise errors.failed_precondition(f"This invitation is already {status}.")

    board_id = invitation.get("boardId")
    board_ref, board = load_board(db, board_id)
    if board.get("ownerId") == caller.uid:
        raise errors.failed_precondition("You already own this board.")

    role = invitation.get("role")
    board_name = board.get("name") or invitation.get("boardName", "")
    responded_at = now_utc()

    # all or nothing: membership, both role maps, ledger entry, notification
    batch = db.batch()
    batch.set(membership_ref(db, caller.uid, board_id), new_membership(board_id, board_name, role))
    batch.update(board_ref, {
        f"members.{caller.uid}": role,
        f"sharedWith.{caller.uid}": role,
    })
    batch.update(invitation_ref, {
        "status": InvitationStatus.accepted.value,
        "recipientUid": caller.uid,
        "respondedAt": responded_at,
    }, option=db.write_option(last_update_time=read_at))
    batch.delete(db.collection(PENDING_INVITATION_KEYS).document(pending_invitation_key(board_id, invitation.get("recipientEmail"))))
    add_notification(db, batch, invitation_response_notification(invitation, caller.email, accepted=True))
    try:
        batch.commit()
    except gexc.FailedPrecondition as e:
        # answered by another request since it was read
        status = _current_status(invitation_ref)
        raise errors.failed_precondition(f"This invitation is already {status}.") from e

    logger.info(f"[invitations.accept_board_invitation] invitation={invitation_ref.id} board={board_id} uid={caller.uid} role={role}")
    return ActionResponse(message=f"Successfully joined board \"{board_name}\".").model_dump()


@errors.guard("declineBoardInvitation")
def decline_board_invitation(ctx, caller: Optional[Caller], data) -> dict:
    caller = require_caller(caller, "You must be logged in to decline an invitation.")
    req = parse(InvitationActionRequest, data)
    db = ctx.db

    invitation_ref, invitation, read_at = _load_own_invitation(ctx, caller, req.invitationId)
    status = invitation.get("status")
    if status == InvitationStatus.declined.value:
        logger.info(f"[invitations.decline_board_invitation] invitation={invitation_ref.id} already declined")
        return ActionResponse(message="Invitation declined.").model_dump()
    if status != InvitationStatus.pending.value:
        raise errors.failed_precondition(f"This invitation is already {status}.")

    batch = db.batch()
    batch.update(invitation_ref, {
        "status": InvitationStatus.declined.value,
        "respondedAt": now_utc(),
    }, option=db.write_option(last_update_time=read_at))
    batch.delete(db.collection(PENDING_INVITATION_KEYS).document(
        pending_invitation_key(invitation.get("boardId"), invitation.get("recipientEmail"))
    ))
    add_notification(db, batch, invitation_response_notification(invitation, caller.email, accepted=False))
    try:
        batch.commit()
    except gexc.FailedPrecondition as e:
        status = _current_status(invitation_ref)
        if status == InvitationStatus.declined.value:
            return ActionResponse(message="Invitation declined.").model_dump()
        raise errors.failed_precondition(f"This invitation is already {status}.") from e

    logger.info(f"[invitations.decline_board_invitation] invitation={invitation_ref.id} declined")
    return ActionResponse(message="Invitation declined.").model_dump()


def _newest_first(invitations: list) -> list:
    return sorted(invitations, key=lambda inv: inv.get("createdAt") or "", reverse=True)


def get_pending_invitations(db, email: Optional[str]) -> list:
    email = normalize_email(email)
    if not email:
        return []
    query = (
        db.collection(BOARD_INVITATIONS)
        .where(filter=gcf.FieldFilter("recipientEmail", "==", email))
        .where(filter=gcf.FieldFilter("status", "==", InvitationStatus.pending.value))
    )
    return _newest_first([serialize_doc(doc.id, doc.to_dict()) for doc in query.stream()])


@errors.guard("getBoardInvitations")
def get_board_invitations(ctx, caller: Optional[Caller], board_id: str) -> list:
    caller = require_caller(caller, "You must be logged in to view invitations.")
    _, board = load_board(ctx.db, board_id)
    if board.get("ownerId") != caller.uid:
        raise errors.permission_denied("Only the board owner can view the board's invitations.")
    query = ctx.db.collection(BOARD_INVITATIONS).where(filter=gcf.FieldFilter("boardId", "==", board_id))
    return _newest_first([serialize_doc(doc.id, doc.to_dict()) for doc in query.stream()])


# --- routes ----------------------------------------------------------------

@invitations_bp.route("/boards/<board_id>/share", methods=["POST"])
@require_auth
def share_board_route(board_id):
    payload = {**(request.get_json(silent=True) or {}), "boardId": board_id}
    return jsonify(share_board(get_context(), g.caller, payload)), 201


@invitations_bp.route("/boards/<board_id>/invitations", methods=["GET"])
@require_auth
def board_invitations_route(board_id):
    return jsonify({"invitations": get_board_invitations(get_context(), g.caller, board_id)}), 200


@invitations_bp.route("/invitations", methods=["GET"])
@require_auth
def pending_invitations_route():
    ctx = get_context()
    return jsonify({"invitations": get_pending_invitations(ctx.db, _caller_email(ctx, g.caller))}), 200


@invitations_bp.route("/invitations/<invitation_id>/accept", methods=["POST"])
@require_auth
def accept_invitation_route(invitation_id):
    return jsonify(accept_board_invitation(get_context(), g.caller, {"invitationId": invitation_id})), 200


@invitations_bp.route("/invitations/<invitation_id>/decline", methods=["POST"])
@require_auth
def decline_invitation_route(invitation_id):
    return jsonify(decline_board_invitation(get_context(), g.caller, {"invitationId": invitation_id})), 200

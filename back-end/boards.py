from typing import Optional

from firebase_functions import logger
from flask import Blueprint, g, jsonify, request
from google.cloud import firestore as gcf

import errors
from auth import Caller, get_context, require_auth, require_caller
from models import (
    BOARD_MEMBERSHIPS,
    BOARDS,
    SHAREABLE_ROLES,
    USERS,
    BoardRole,
    new_board,
    new_membership,
    serialize_doc,
)
from schemas import ActionResponse, BoardRequest, CreateBoardRequest, MemberRoleRequest, UpdateBoardRequest, parse

boards_bp = Blueprint("boards", __name__)


def membership_ref(db, uid: str, board_id: str):
    return db.collection(USERS).document(uid).collection(BOARD_MEMBERSHIPS).document(board_id)


def load_board(db, board_id: str):
    """Return (ref, data) for a board or raise NOT_FOUND / INTERNAL."""
    board_ref = db.collection(BOARDS).document(board_id)
    snap = board_ref.get()
    if not snap.exists:
        raise errors.not_found("Board not found.")
    data = snap.to_dict()
    if not data:
        logger.error(f"[boards.load_board] board {board_id} has no data")
        raise errors.internal("Could not retrieve board data.")
    return board_ref, data


def member_uids(board: dict) -> list:
    """Owner first, then every other uid in the role map."""
    owner_id = board.get("ownerId")
    uids = [owner_id] if owner_id else []
    uids += [uid for uid in (board.get("members") or {}) if uid != owner_id]
    return uids


def role_of(board: dict, uid: str) -> Optional[str]:
    if uid and uid == board.get("ownerId"):
        return BoardRole.owner.value
    return (board.get("members") or {}).get(uid) or (board.get("sharedWith") or {}).get(uid)


def _require_owner(board: dict, caller: Caller, message: str):
    if board.get("ownerId") != caller.uid:
        raise errors.permission_denied(message)


def _validate_member_role(role: str) -> str:
    role = role.lower()
    if role == BoardRole.owner.value:
        raise errors.invalid_argument("Cannot assign owner role.")
    if role not in SHAREABLE_ROLES:
        raise errors.invalid_argument(f"Role must be one of: {', '.join(SHAREABLE_ROLES)}")
    return role


# --- reads -----------------------------------------------------------------

def get_board(db, board_id: str) -> Optional[dict]:
    snap = db.collection(BOARDS).document(board_id).get()
    if not snap.exists:
        return None
    return serialize_doc(snap.id, snap.to_dict())


def get_owned_boards(db, uid: str) -> list:
    query = db.collection(BOARDS).where(filter=gcf.FieldFilter("ownerId", "==", uid))
    return [serialize_doc(doc.id, doc.to_dict()) for doc in query.stream()]


def get_shared_boards(db, uid: str) -> list:
    """Boards the user was invited to, read through their Membership Store."""
    shared = []
    memberships = db.collection(USERS).document(uid).collection(BOARD_MEMBERSHIPS).stream()
    for membership in memberships:
        record = membership.to_dict() or {}
        if record.get("role") == BoardRole.owner.value:
            continue
        board = get_board(db, membership.id)
        if board is None:
            logger.warn(f"[boards.get_shared_boards] dangling membership {uid}/{membership.id}")
            continue
        shared.append({"board": board, "role": record.get("role")})
    return shared


@errors.guard("getBoardMembers")
def get_board_members(ctx, caller: Optional[Caller], data) -> list:
    caller = require_caller(caller, "You must be logged in to get board members.")
    board_id = parse(BoardRequest, data).boardId
    db = ctx.db
    _, board = load_board(db, board_id)
    if role_of(board, caller.uid) is None:
        raise errors.permission_denied("You are not a member of this board.")

    uids = member_uids(board)
    if not uids:
        return []
    profiles = {snap.id: snap for snap in db.get_all([db.collection(USERS).document(uid) for uid in uids])}

    members = []
    for uid in uids:
        snap = profiles.get(uid)
        if snap is None or not snap.exists:
            continue
        email = (snap.to_dict() or {}).get("email")
        if not email:
            logger.warn(f"[boards.get_board_members] user without email: {uid}")
            continue
        members.append({"uid": uid, "email": email, "role": role_of(board, uid) or BoardRole.viewer.value})
    logger.info(f"[boards.get_board_members] board={board_id} members={len(members)}")
    return members


# --- writes ----------------------------------------------------------------

@errors.guard("createBoard")
def create_board(ctx, caller: Optional[Caller], data) -> dict:
    caller = require_caller(caller, "You must be logged in to create a board.")
    req = parse(CreateBoardRequest, data)
    db = ctx.db

    board_ref = db.collection(BOARDS).document()
    board = new_board(req.name, req.icon, caller.uid)

    batch = db.batch()
    batch.set(board_ref, board)
    batch.set(membership_ref(db, caller.uid, board_ref.id), new_membership(board_ref.id, req.name, BoardRole.owner.value))
    batch.commit()

    logger.info(f"[boards.create_board] board={board_ref.id} owner={caller.uid}")
    return serialize_doc(board_ref.id, board)


@errors.guard("updateBoardDetails")
def update_board_details(ctx, caller: Optional[Caller], board_id: str, data) -> dict:
    caller = require_caller(caller, "You must be logged in to update a board.")
    req = parse(UpdateBoardRequest, data)
    db = ctx.db
    board_ref, board = load_board(db, board_id)
    _require_owner(board, caller, "Only the board owner can update the board.")

    updates = {"name": req.name}
    if req.icon:
        updates["icon"] = req.icon

    batch = db.batch()
    batch.update(board_ref, updates)
    for uid in member_uids(board):
        batch.set(
            membership_ref(db, uid, board_id),
            {"boardId": board_id, "boardName": req.name, "role": role_of(board, uid)},
            merge=True,
        )
    batch.commit()

    logger.info(f"[boards.update_board_details] board={board_id} name={req.name!r}")
    return serialize_doc(board_id, {**board, **updates})


@errors.guard("updateMemberRole")
def update_member_role(ctx, caller: Optional[Caller], board_id: str, member_uid: str, data) -> dict:
    caller = require_caller(caller, "You must be logged in to change member roles.")
    req = parse(MemberRoleRequest, data)
    role = _validate_member_role(req.role)
    db = ctx.db
    board_ref, board = load_board(db, board_id)
    _require_owner(board, caller, "Only the board owner can change member roles.")

    if member_uid == board.get("ownerId"):
        raise errors.failed_precondition("The board owner's role cannot be changed.")
    if member_uid not in (board.get("members") or {}):
        raise errors.not_found("Member not found.")

    batch = db.batch()
    batch.update(board_ref, {
        f"members.{member_uid}": role,
        f"sharedWith.{member_uid}": role,
    })
    batch.set(
        membership_ref(db, member_uid, board_id),
        {"boardId": board_id, "boardName": board.get("name", ""), "role": role, "updatedAt": gcf.SERVER_TIMESTAMP},
        merge=True,
    )
    batch.commit()

    logger.info(f"[boards.update_member_role] board={board_id} member={member_uid} role={role}")
    return ActionResponse(message=f"Role updated to {role}.").model_dump()


@errors.guard("removeMember")
def remove_member(ctx, caller: Optional[Caller], board_id: str, member_uid: str) -> dict:
    """Owner removes a member, or a member leaves the board."""
    caller = require_caller(caller, "You must be logged in to remove members.")
    db = ctx.db
    board_ref, board = load_board(db, board_id)

    if member_uid == board.get("ownerId"):
        raise errors.failed_precondition("The board owner cannot be removed. Delete the board instead.")
    if caller.uid != board.get("ownerId") and caller.uid != member_uid:
        raise errors.permission_denied("Only the board owner can remove members.")
    if member_uid not in (board.get("members") or {}):
        raise errors.not_found("Member not found.")

    batch = db.batch()
    batch.update(board_ref, {
        f"members.{member_uid}": gcf.DELETE_FIELD,
        f"sharedWith.{member_uid}": gcf.DELETE_FIELD,
    })
    batch.delete(membership_ref(db, member_uid, board_id))
    batch.commit()

    leaving = member_uid == caller.uid
    logger.info(f"[boards.remove_member] board={board_id} member={member_uid} left={leaving}")
    message = "You left the board." if leaving else "Member removed."
    return ActionResponse(message=message).model_dump()


@errors.guard("deleteBoard")
def delete_board(ctx, caller: Optional[Caller], board_id: str) -> dict:
    caller = require_caller(caller, "You must be logged in to delete a board.")
    db = ctx.db
    board_ref, board = load_board(db, board_id)
    _require_owner(board, caller, "Only the board owner can delete the board.")

    # membership records are not cascaded by Firestore
    batch = db.batch()
    for uid in member_uids(board):
        batch.delete(membership_ref(db, uid, board_id))
    batch.delete(board_ref)
    batch.commit()

    logger.info(f"[boards.delete_board] board={board_id} memberships={len(member_uids(board))}")
    return ActionResponse(message=f"Board \"{board.get('name', '')}\" deleted.").model_dump()


# --- routes ----------------------------------------------------------------

@boards_bp.route("/boards", methods=["GET"])
@require_auth
def list_boards():
    db = get_context().db
    return jsonify({
        "owned": get_owned_boards(db, g.caller.uid),
        "shared": get_shared_boards(db, g.caller.uid),
    }), 200


@boards_bp.route("/boards", methods=["POST"])
@require_auth
def create_board_route():
    board = create_board(get_context(), g.caller, request.get_json(silent=True))
    return jsonify(board), 201


@boards_bp.route("/boards/<board_id>", methods=["PATCH"])
@require_auth
def update_board_route(board_id):
    board = update_board_details(get_context(), g.caller, board_id, request.get_json(silent=True))
    return jsonify(board), 200


@boards_bp.route("/boards/<board_id>", methods=["DELETE"])
@require_auth
def delete_board_route(board_id):
    return jsonify(delete_board(get_context(), g.caller, board_id)), 200


@boards_bp.route("/boards/<board_id>/members", methods=["GET"])
@require_auth
def list_members_route(board_id):
    return jsonify({"members": get_board_members(get_context(), g.caller, {"boardId": board_id})}), 200


@boards_bp.route("/boards/<board_id>/members/<member_uid>", methods=["PUT"])
@require_auth
def update_member_role_route(board_id, member_uid):
    result = update_member_role(get_context(), g.caller, board_id, member_uid, request.get_json(silent=True))
    return jsonify(result), 200


@boards_bp.route("/boards/<board_id>/members/<member_uid>", methods=["DELETE"])
@require_auth
def remove_member_route(board_id, member_uid):
    return jsonify(remove_member(get_context(), g.caller, board_id, member_uid)), 200

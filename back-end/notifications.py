from google.cloud import firestore as gcf

from models import NOTIFICATIONS


def invitation_response_notification(invitation: dict, responder_email: str, accepted: bool) -> dict:
    """In-app notice for the invitation sender once the recipient answers."""
    verb = "accepted" if accepted else "declined"
    return {
        "recipientUid": invitation.get("senderUid"),
        "message": f"{responder_email} {verb} your invitation to join \"{invitation.get('boardName', '')}\".",
        "type": verb,
        "relatedBoardId": invitation.get("boardId"),
        "isRead": False,
        "timestamp": gcf.SERVER_TIMESTAMP,
    }


def add_notification(db, batch, notif: dict):
    """Stage a notification write in the caller's batch so it lands with the state change."""
    notif = {k: v for k, v in notif.items() if v is not None}
    ref = db.collection(NOTIFICATIONS).document()
    batch.set(ref, notif)
    return ref

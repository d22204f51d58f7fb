"""
Callable Cloud Functions for board sharing.

The web client invokes these by name (httpsCallable(functions, "shareBoard")),
so the exported names keep the client's camelCase.
"""
import os
import sys
from typing import Optional

from firebase_functions import https_fn
from firebase_functions.params import SecretParam

# the service modules live one level up from this folder
BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

import boards  # noqa: E402
import invitations  # noqa: E402
from auth import Caller  # noqa: E402
from firebase import AppContext, create_context  # noqa: E402
from mailer import EMAIL_FROM, EMAIL_PROVIDER, Mailer  # noqa: E402

SENDGRID_API_KEY = SecretParam("SENDGRID_API_KEY")
MAILGUN_API_KEY = SecretParam("MAILGUN_API_KEY")
MAILGUN_DOMAIN = os.environ.get("MAILGUN_DOMAIN")
EMAIL_SECRETS = {"sendgrid": [SENDGRID_API_KEY], "mailgun": [MAILGUN_API_KEY]}.get(EMAIL_PROVIDER, [])

_context: Optional[AppContext] = None


def get_context() -> AppContext:
    """Build the process-wide context on first use; secrets are only readable at runtime."""
    global _context
    if _context is None:
        mailer = Mailer(
            provider=EMAIL_PROVIDER,
            from_email=EMAIL_FROM,
            sendgrid_api_key=SENDGRID_API_KEY.value if EMAIL_PROVIDER == "sendgrid" else None,
            mailgun_api_key=MAILGUN_API_KEY.value if EMAIL_PROVIDER == "mailgun" else None,
            mailgun_domain=MAILGUN_DOMAIN,
        )
        _context = create_context(mailer=mailer)
    return _context


def caller_from_request(req) -> Optional[Caller]:
    auth = getattr(req, "auth", None)
    if auth is None or not getattr(auth, "uid", None):
        return None
    return Caller.from_claims(auth.uid, getattr(auth, "token", None))


def handle_share_board(req) -> dict:
    return invitations.share_board(get_context(), caller_from_request(req), req.data)


def handle_accept_board_invitation(req) -> dict:
    return invitations.accept_board_invitation(get_context(), caller_from_request(req), req.data)


def handle_decline_board_invitation(req) -> dict:
    return invitations.decline_board_invitation(get_context(), caller_from_request(req), req.data)


def handle_get_board_members(req) -> dict:
    return {"members": boards.get_board_members(get_context(), caller_from_request(req), req.data)}


@https_fn.on_call(secrets=EMAIL_SECRETS)
def shareBoard(req: https_fn.CallableRequest) -> dict:  # noqa: N802
    return handle_share_board(req)


@https_fn.on_call()
def acceptBoardInvitation(req: https_fn.CallableRequest) -> dict:  # noqa: N802
    return handle_accept_board_invitation(req)


@https_fn.on_call()
def declineBoardInvitation(req: https_fn.CallableRequest) -> dict:  # noqa: N802
    return handle_decline_board_invitation(req)


@https_fn.on_call()
def getBoardMembers(req: https_fn.CallableRequest) -> dict:  # noqa: N802
    return handle_get_board_members(req)

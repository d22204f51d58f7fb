from dataclasses import dataclass
from functools import wraps
from typing import Any, Dict, Optional

from firebase_admin import auth as firebase_auth
from firebase_functions import logger
from flask import current_app, g, request

import errors
from models import normalize_email


@dataclass(frozen=True)
class Caller:
    """Identity of the user behind a request, taken from a verified ID token."""

    uid: str
    email: Optional[str] = None
    email_verified: Optional[bool] = None

    @classmethod
    def from_claims(cls, uid: str, claims: Optional[Dict[str, Any]]) -> "Caller":
        claims = claims or {}
        email = normalize_email(claims.get("email")) or None
        return cls(uid=uid, email=email, email_verified=claims.get("email_verified"))


def require_caller(caller: Optional[Caller], message: str) -> Caller:
    if caller is None or not caller.uid:
        raise errors.unauthenticated(message)
    return caller


def require_verified_email(caller: Caller, strict: bool = True) -> str:
    """Return the caller's email, rejecting tokens without a usable one."""
    if not caller.email:
        raise errors.invalid_argument("Authenticated user must have an email.")
    if strict and caller.email_verified is False:
        raise errors.invalid_argument("Authenticated user must have a verified email.")
    return caller.email


def get_context():
    return current_app.extensions["taskflow"]


def require_auth(f):
    """Verify the Firebase ID token in the Authorization header and expose g.caller."""

    @wraps(f)
    def wrap(*args, **kwargs):
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            raise errors.unauthenticated("Missing or invalid authorization token.")

        id_token = auth_header.split("Bearer ", 1)[1].strip()
        try:
            claims = get_context().verify_token(id_token)
        except (firebase_auth.InvalidIdTokenError, ValueError) as e:
            raise errors.unauthenticated("Invalid ID token.") from e
        except Exception as e:
            logger.error(f"[auth.require_auth] token verification error: {e!r}")
            raise errors.unauthenticated("Could not verify token.") from e

        g.caller = Caller.from_claims(claims.get("uid"), claims)
        return f(*args, **kwargs)

    return wrap

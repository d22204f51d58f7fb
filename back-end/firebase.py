import os
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import firebase_admin
from firebase_admin import auth, credentials, firestore

from mailer import Mailer

DEFAULT_SERVICE_ACCOUNT_PATH = "./taskflow-firebase-adminsdk.json"
SERVICE_ACCOUNT_PATH = os.environ.get("FIREBASE_SERVICE_ACCOUNT_PATH", DEFAULT_SERVICE_ACCOUNT_PATH)
USE_EMULATOR = os.environ.get("FIREBASE_USE_EMULATOR", "").lower() in {"1", "true", "yes"}
PROJECT_ID = os.environ.get("FIREBASE_PROJECT_ID", "taskflow-4doit")
REQUIRE_VERIFIED_EMAIL = os.environ.get("REQUIRE_VERIFIED_EMAIL", "true").lower() in {"1", "true", "yes"}


@dataclass
class AppContext:
    """Handles shared by every request handler.

    Built once per process and passed explicitly into the service functions.
    """

    db: Any
    mailer: Optional[Mailer] = None
    verify_token: Callable[[str], dict] = field(default=auth.verify_id_token)
    require_verified_email: bool = REQUIRE_VERIFIED_EMAIL


def initialize_firebase() -> firebase_admin.App:
    if firebase_admin._apps:
        return firebase_admin.get_app()
    if USE_EMULATOR:
        return firebase_admin.initialize_app(options={"projectId": PROJECT_ID})
    try:
        cred = credentials.Certificate(SERVICE_ACCOUNT_PATH)
    except (FileNotFoundError, ValueError):
        # falls back to application default credentials (Cloud Functions, Cloud Run)
        return firebase_admin.initialize_app(options={"projectId": PROJECT_ID})
    return firebase_admin.initialize_app(cred)


def create_context(mailer: Optional[Mailer] = None) -> AppContext:
    app = initialize_firebase()
    return AppContext(
        db=firestore.client(app),
        mailer=mailer if mailer is not None else Mailer.from_env(),
    )

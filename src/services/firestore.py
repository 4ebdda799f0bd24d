"""Lazy Firebase Admin / Firestore initialisation.

The Firestore client is created once per process from the service-account
file named by ``FIREBASE_CREDENTIALS_PATH`` and reused by every request.
A missing or invalid credential file raises immediately: a misconfigured
database is a start-up error, never something the agent should paper over.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import firebase_admin
from firebase_admin import credentials, firestore
from google.cloud.firestore import Client

from src.config import FIREBASE_CREDENTIALS_PATH

logger = logging.getLogger(__name__)


class FirestoreConfigError(RuntimeError):
    """Raised when Firestore cannot be initialised from the configured credentials."""


_db: Client | None = None
_db_lock = threading.Lock()


def _initialise_app(credentials_path: str) -> firebase_admin.App:
    """Return the default Firebase app, initialising it on first use."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass  # no default app yet

    path = Path(credentials_path).expanduser().resolve()
    if not path.is_file():
        raise FirestoreConfigError(
            f"Firebase service-account file not found at {path}. "
            "Set FIREBASE_CREDENTIALS_PATH to a valid credentials JSON file."
        )
    try:
        cert = credentials.Certificate(str(path))
    except ValueError as exc:
        raise FirestoreConfigError(f"Invalid Firebase credentials in {path}: {exc}") from exc

    app = firebase_admin.initialize_app(cert)
    logger.info("Firebase Admin initialised (project=%s)", app.project_id)
    return app


def get_firestore_client(credentials_path: str | None = None) -> Client:
    """Return the process-wide Firestore client.

    Uses double-checked locking so that the lock is only acquired during
    the first initialisation, not on every subsequent call.
    """
    global _db
    if _db is None:
        with _db_lock:
            if _db is None:
                app = _initialise_app(credentials_path or FIREBASE_CREDENTIALS_PATH)
                _db = firestore.client(app)
    return _db

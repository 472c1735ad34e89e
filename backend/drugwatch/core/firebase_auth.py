"""Firebase Authentication

Verifies Firebase ID tokens sent by the web client. The API never mints
tokens; sign-in, session persistence and password reset happen against
the identity provider directly.
"""

import logging
import os
from typing import Optional

import firebase_admin
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials

from drugwatch.core.config import settings

logger = logging.getLogger(__name__)


def init_firebase() -> firebase_admin.App:
    """Initialize the Firebase Admin SDK once, with the realtime database URL."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        # Not initialized yet
        options = {}
        if settings.FIREBASE_DATABASE_URL:
            options["databaseURL"] = settings.FIREBASE_DATABASE_URL
        if settings.FIREBASE_PROJECT_ID:
            options["projectId"] = settings.FIREBASE_PROJECT_ID

        cred_path = settings.GOOGLE_APPLICATION_CREDENTIALS
        if cred_path and os.path.exists(cred_path):
            cred = credentials.Certificate(cred_path)
        else:
            # Default credentials (Cloud Run / Cloud Functions)
            cred = None
        app = firebase_admin.initialize_app(cred, options or None)
        logger.info(f"[AUTH] Firebase initialized (project={settings.FIREBASE_PROJECT_ID or 'default'})")
        return app


# Security scheme
security = HTTPBearer(auto_error=False)


class FirebaseUser:
    """Represents a verified Firebase user."""

    def __init__(
        self,
        uid: str,
        email: Optional[str] = None,
        email_verified: bool = False,
        name: Optional[str] = None,
        claims: Optional[dict] = None,
    ):
        self.uid = uid
        self.email = email
        self.email_verified = email_verified
        self.name = name
        self.claims = claims or {}

    @property
    def label(self) -> str:
        """Human-readable identifier stored as ``createdBy``."""
        return self.name or self.email or self.uid

    def __repr__(self) -> str:
        return f"FirebaseUser(uid={self.uid!r}, email={self.email!r})"


async def verify_firebase_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[FirebaseUser]:
    """
    Verify Firebase JWT token from Authorization header.

    Returns FirebaseUser if valid, None if no token provided.
    Raises HTTPException if token is invalid.
    """
    if not credentials:
        return None

    init_firebase()

    try:
        decoded_token = firebase_auth.verify_id_token(credentials.credentials)
    except firebase_auth.ExpiredIdTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token expired",
        )
    except firebase_auth.RevokedIdTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token revoked",
        )
    except firebase_auth.InvalidIdTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Authentication failed: {e}",
        )

    return FirebaseUser(
        uid=decoded_token["uid"],
        email=decoded_token.get("email"),
        email_verified=decoded_token.get("email_verified", False),
        name=decoded_token.get("name"),
        claims=decoded_token,
    )


async def require_firebase_auth(
    firebase_user: Optional[FirebaseUser] = Depends(verify_firebase_token),
) -> FirebaseUser:
    """Require valid Firebase authentication."""
    if not firebase_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return firebase_user

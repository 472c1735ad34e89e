"""Authentication router.

Inspectors sign in against Firebase on the client. The API verifies
Firebase JWTs - it never mints them.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from drugwatch.core.firebase_auth import FirebaseUser, require_firebase_auth
from drugwatch.dependencies import get_user_role

router = APIRouter(prefix="/auth", tags=["auth"])


# ============================================================================
# SCHEMAS
# ============================================================================

class UserProfile(BaseModel):
    """User profile response."""
    uid: str
    email: Optional[str] = None
    name: Optional[str] = None
    email_verified: bool = False
    role: Optional[str] = None


# ============================================================================
# ENDPOINTS
# ============================================================================

@router.get("/me", response_model=UserProfile)
async def get_my_profile(
    current_user: FirebaseUser = Depends(require_firebase_auth),
    role: Optional[str] = Depends(get_user_role),
):
    """
    Get current user's profile.

    Requires valid Firebase JWT in Authorization header. ``role`` is null
    when the account has no active portal role.
    """
    return UserProfile(
        uid=current_user.uid,
        email=current_user.email,
        name=current_user.name,
        email_verified=current_user.email_verified,
        role=role,
    )

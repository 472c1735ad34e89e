from fastapi import APIRouter, Depends

from drugwatch.core.firebase_auth import FirebaseUser
from drugwatch.dependencies import get_lifecycle, require_role
from drugwatch.services.lifecycle import ImpoundmentLifecycle, ReminderReport

router = APIRouter(prefix="/reminders", tags=["reminders"])


@router.post("/run", response_model=ReminderReport)
async def run_reminders(
    lifecycle: ImpoundmentLifecycle = Depends(get_lifecycle),
    user: FirebaseUser = Depends(require_role("admin")),
):
    """Run the overdue-in-store reminder sweep now (admin only)."""
    return await lifecycle.remind_overdue()

"""Owner auto-approval policy and statistics."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.core.database import get_db
from courtslot.core.dependencies import require_owner
from courtslot.models.auto_approval import AutoApprovalSettings
from courtslot.models.member import User
from courtslot.schemas import AutoApprovalPolicy, AutoApprovalSettingsOut, AutoApprovalStatsOut
from courtslot.services import auto_approval

router = APIRouter(prefix="/owner/auto-approval", tags=["auto-approval"])


def _settings_out(row: AutoApprovalSettings) -> AutoApprovalSettingsOut:
    return AutoApprovalSettingsOut(
        owner_id=row.owner_id,
        policy=AutoApprovalPolicy.model_validate(row.policy),
        total_auto_approved=row.total_auto_approved,
        total_manual_reviews=row.total_manual_reviews,
    )


@router.get("", response_model=AutoApprovalSettingsOut)
async def get_settings(owner: User = Depends(require_owner), db: AsyncSession = Depends(get_db)):
    return _settings_out(await auto_approval.get_or_create_settings(db, owner.id))


@router.put("", response_model=AutoApprovalSettingsOut)
async def update_settings(
    body: AutoApprovalPolicy,
    owner: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    return _settings_out(await auto_approval.update_policy(db, owner.id, body))


@router.get("/stats", response_model=AutoApprovalStatsOut)
async def get_stats(
    days: int = Query(30, ge=1, le=365),
    owner: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    return await auto_approval.get_auto_approval_stats(db, owner.id, days=days)

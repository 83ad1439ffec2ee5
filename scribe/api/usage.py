"""
Usage API routes.

- GET /api/usage/stats: Notes, this month's metered usage, plan
- GET /api/usage/quota: Note and conversion quotas
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from scribe.core.auth import get_current_user_id
from scribe.features.usage.service import check_note_quota, check_operation_quota, get_user_stats
from scribe.models.usage_record import QuotaCheck, UsageOperation


router = APIRouter(prefix="/usage", tags=["usage"])


class QuotaResponse(BaseModel):
    notes: QuotaCheck
    conversions: QuotaCheck


@router.get("/stats")
def usage_stats(user_id: str = Depends(get_current_user_id)):
    return get_user_stats(user_id)


@router.get("/quota", response_model=QuotaResponse)
def usage_quota(user_id: str = Depends(get_current_user_id)):
    return {
        "notes": check_note_quota(user_id),
        "conversions": check_operation_quota(user_id, UsageOperation.OCR),
    }

"""Public plan catalog endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.api.deps import get_db
from vistream.billing.plans import list_active_plans
from vistream.schemas.plans import PlanOut, PlansListResponse

router = APIRouter(prefix="/api/plans", tags=["plans"])


@router.get("", response_model=PlansListResponse)
async def list_plans(db: AsyncSession = Depends(get_db)) -> PlansListResponse:
    """List available plans (public, no auth required)."""
    plans = await list_active_plans(db)
    return PlansListResponse(plans=[PlanOut.model_validate(p) for p in plans])

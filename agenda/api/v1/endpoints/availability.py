from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.api.deps.business import BusinessContext, get_business_context
from agenda.api.deps.database import get_db
from agenda.schemas.scheduling import AvailabilityResponse, ProfessionalOption
from agenda.services.scheduling import AvailabilityEngine

router = APIRouter()


@router.get("", response_model=AvailabilityResponse)
async def get_availability(
    date: date = Query(..., description="Business-local date"),
    service_ids: List[int] = Query(..., description="Cart service IDs, in order"),
    professional_id: Optional[int] = Query(
        None, description="Restrict to one professional"
    ),
    context: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Bookable slots for a cart on a business day.

    Each slot reports whether at least one eligible professional is free for
    the whole window, which professionals are busy, and why it is
    unavailable. The result is advisory; booking re-validates.
    """
    engine = AvailabilityEngine(db)
    return await engine.compute_availability(
        context.business_id, date, service_ids, professional_id
    )


@router.get("/professionals", response_model=List[ProfessionalOption])
async def get_professional_availability(
    scheduled_at: datetime = Query(..., description="Chosen start time"),
    service_ids: List[int] = Query(...),
    context: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    """Eligible professionals at a time; busy ones are listed as not selectable."""
    engine = AvailabilityEngine(db)
    return await engine.professional_options(
        context.business_id, scheduled_at, service_ids
    )

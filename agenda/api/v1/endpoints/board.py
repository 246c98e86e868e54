from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.api.deps.business import BusinessContext, get_business_context
from agenda.api.deps.database import get_db
from agenda.api.v1.endpoints.appointments import get_calendar_store
from agenda.schemas.board import BoardView
from agenda.services.calendar_store import CalendarStore
from agenda.services.schedule_board import ScheduleBoard

router = APIRouter()


@router.get("", response_model=BoardView)
async def get_board(
    date: date = Query(..., description="Business-local date"),
    professional_id: Optional[int] = Query(None),
    context: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
    store: CalendarStore = Depends(get_calendar_store),
):
    """
    Schedule board for one business day.

    Cells follow the business slot grid and list every entry covering the
    cell together with the actions currently allowed on it.
    """
    board = ScheduleBoard(
        db, context.business_id, date, professional_id=professional_id, store=store
    )
    return await board.refresh()

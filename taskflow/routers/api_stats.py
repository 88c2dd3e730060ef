from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..analytics import productivity_stats, weekly_chart_data
from ..auth import get_clock, get_current_user_api
from ..config import get_settings
from ..crud import list_tasks_for_assignee
from ..db import get_db
from ..utils.time_utils import Clock


router = APIRouter()


@router.get("/productivity")
def api_productivity(
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    # Full history: completed tasks are not subject to the 24h visibility window here.
    tasks = list_tasks_for_assignee(db, current_user)
    return productivity_stats(tasks, clock.now(), max_streak_days=int(get_settings().tasks.streak_max_days))


@router.get("/weekly")
def api_weekly(
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    return weekly_chart_data(list_tasks_for_assignee(db, current_user), clock.now())

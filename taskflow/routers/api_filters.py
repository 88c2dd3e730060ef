from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth import get_clock, get_current_user_api
from ..classifier import sort_tasks
from ..crud import (
    create_smart_filter,
    delete_smart_filter,
    get_smart_filter,
    list_smart_filters,
    normalize_email,
    update_smart_filter,
)
from ..db import get_db
from ..filters import PRESET_FILTERS, apply_filter
from ..models import SmartFilter
from ..schemas import FilterApply, PresetFilterOut, SmartFilterCreate, SmartFilterOut, SmartFilterUpdate, TaskOut, task_out
from ..utils.time_utils import Clock
from .api_tasks import visible_for_user


router = APIRouter()


def _load_filter(db: Session, filter_id: int, current_user: str) -> SmartFilter:
    sf = get_smart_filter(db, filter_id=filter_id)
    if not sf:
        raise HTTPException(status_code=404, detail="Filter not found")
    if normalize_email(sf.user_email) != current_user:
        raise HTTPException(status_code=403, detail="Not allowed")
    return sf


@router.get("/presets", response_model=list[PresetFilterOut])
def api_list_presets():
    return [PresetFilterOut(**p.to_dict()) for p in PRESET_FILTERS]


@router.get("/", response_model=list[SmartFilterOut])
def api_list_filters(
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    return list_smart_filters(db, user_email=current_user)


@router.post("/", response_model=SmartFilterOut)
def api_create_filter(
    payload: SmartFilterCreate,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    try:
        return create_smart_filter(db, user_email=current_user, name=payload.name, criteria=payload.criteria)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{filter_id}", response_model=SmartFilterOut)
def api_get_filter(
    filter_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    return _load_filter(db, filter_id, current_user)


@router.patch("/{filter_id}", response_model=SmartFilterOut)
def api_update_filter(
    filter_id: int,
    payload: SmartFilterUpdate,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    sf = _load_filter(db, filter_id, current_user)
    try:
        return update_smart_filter(
            db, smart_filter=sf, current_user=current_user, name=payload.name, criteria=payload.criteria
        )
    except PermissionError:
        raise HTTPException(status_code=403, detail="Not allowed")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{filter_id}")
def api_delete_filter(
    filter_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
):
    sf = _load_filter(db, filter_id, current_user)
    try:
        delete_smart_filter(db, smart_filter=sf, current_user=current_user)
    except PermissionError:
        raise HTTPException(status_code=403, detail="Not allowed")
    return {"deleted": filter_id}


@router.post("/apply", response_model=list[TaskOut])
def api_apply_criteria(
    payload: FilterApply,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user_api),
    clock: Clock = Depends(get_clock),
):
    """Evaluate ad-hoc criteria against the caller's visible tasks without saving them."""
    now = clock.now()
    try:
        tasks = apply_filter(visible_for_user(db, current_user, now), payload.criteria, now.date())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [task_out(t, now) for t in sort_tasks(tasks)]

from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.api.profile import ProfileResponse, get_current_profile, profile_response
from app.core.timezones import format_date_in_zone, shift_civil_date, to_utc_naive, today_in_zone
from app.db.models import User, UserProfile
from app.db.session import get_db
from app.services.profile import update_user_profile
from app.services.progress import (
    daily_stats_to_dict,
    get_or_create_daily_stats,
    get_weekly_stats,
    increment_daily_stats,
    log_water,
)

router = APIRouter(prefix="/progress", tags=["progress"])


class DailyStatsResponse(BaseModel):
    id: int
    user_id: int
    date: str
    calories_goal: int
    calories_consumed: float
    protein_goal_g: int
    protein_consumed_g: float
    carbs_goal_g: int
    carbs_consumed_g: float
    fat_goal_g: int
    fat_consumed_g: float
    water_ml: float
    steps: int


class WeeklyStatsResponse(BaseModel):
    week_start: str
    week_end: str
    avg_calories: int
    avg_protein_g: int
    avg_carbs_g: int
    avg_fat_g: int
    total_meals: int
    streak_days: int


class WaterLogRequest(BaseModel):
    amount_ml: float = Field(gt=0, le=10000)
    timestamp: Optional[datetime] = None


class WaterLogResponse(BaseModel):
    id: int
    amount_ml: float
    timestamp: datetime
    daily_stats: DailyStatsResponse


class WeightUpdateRequest(BaseModel):
    weight_kg: float = Field(gt=20, le=500)


@router.get("/daily", response_model=DailyStatsResponse)
def daily(
    on_date: Optional[date] = Query(default=None, alias="date"),
    profile: UserProfile = Depends(get_current_profile),
    db: Session = Depends(get_db),
) -> DailyStatsResponse:
    day = on_date.isoformat() if on_date else today_in_zone(profile.timezone)
    return DailyStatsResponse(**daily_stats_to_dict(get_or_create_daily_stats(db, profile, day)))


@router.get("/weekly", response_model=WeeklyStatsResponse)
def weekly(
    week_start: Optional[date] = None,
    days: int = Query(default=7, ge=1, le=31),
    profile: UserProfile = Depends(get_current_profile),
    db: Session = Depends(get_db),
) -> WeeklyStatsResponse:
    start = week_start.isoformat() if week_start else shift_civil_date(today_in_zone(profile.timezone), -(days - 1))
    return WeeklyStatsResponse(**get_weekly_stats(db, profile, start, days=days))


@router.post("/water", response_model=WaterLogResponse)
def water(
    payload: WaterLogRequest,
    profile: UserProfile = Depends(get_current_profile),
    db: Session = Depends(get_db),
) -> WaterLogResponse:
    moment = payload.timestamp or datetime.now(timezone.utc)
    row = log_water(db, profile.user_id, payload.amount_ml, to_utc_naive(moment))
    day = format_date_in_zone(row.timestamp, profile.timezone)
    stats = increment_daily_stats(db, profile, day, {"water_ml": payload.amount_ml})
    return WaterLogResponse(
        id=row.id,
        amount_ml=row.amount_ml,
        timestamp=row.timestamp,
        daily_stats=DailyStatsResponse(**daily_stats_to_dict(stats)),
    )


@router.post("/weight", response_model=ProfileResponse)
def weight(
    payload: WeightUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ProfileResponse:
    return profile_response(update_user_profile(db, user, {"current_weight_kg": payload.weight_kg}))

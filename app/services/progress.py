import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.core.targets import round_half_up, targets_for_profile
from app.core.timezones import shift_civil_date, utc_range_for_date
from app.db.models import DailyStats, Meal, UserProfile, WaterLog

logger = logging.getLogger("uvicorn.error")

INCREMENT_FIELDS = (
    "calories_consumed",
    "protein_consumed_g",
    "carbs_consumed_g",
    "fat_consumed_g",
    "water_ml",
    "steps",
)


def daily_stats_to_dict(row: DailyStats) -> dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "date": row.date,
        "calories_goal": row.calories_goal,
        "calories_consumed": row.calories_consumed,
        "protein_goal_g": row.protein_goal_g,
        "protein_consumed_g": row.protein_consumed_g,
        "carbs_goal_g": row.carbs_goal_g,
        "carbs_consumed_g": row.carbs_consumed_g,
        "fat_goal_g": row.fat_goal_g,
        "fat_consumed_g": row.fat_consumed_g,
        "water_ml": row.water_ml,
        "steps": row.steps,
    }


def get_or_create_daily_stats(db: Session, profile: UserProfile, date: str) -> DailyStats:
    """Goals are frozen at first touch; later profile changes do not rewrite them."""
    row = (
        db.query(DailyStats)
        .filter(DailyStats.user_id == profile.user_id, DailyStats.date == date)
        .first()
    )
    if row:
        return row

    targets = targets_for_profile(profile)
    row = DailyStats(
        user_id=profile.user_id,
        date=date,
        calories_goal=targets["calories_goal"],
        protein_goal_g=targets["protein_goal_g"],
        carbs_goal_g=targets["carbs_goal_g"],
        fat_goal_g=targets["fat_goal_g"],
        calories_consumed=0.0,
        protein_consumed_g=0.0,
        carbs_consumed_g=0.0,
        fat_consumed_g=0.0,
        water_ml=0.0,
        steps=0,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def increment_daily_stats(db: Session, profile: UserProfile, date: str, deltas: dict[str, float]) -> DailyStats:
    # Read-modify-write without concurrency control: two concurrent increments for the
    # same user and date can lose one update.
    row = get_or_create_daily_stats(db, profile, date)
    for field in INCREMENT_FIELDS:
        amount = deltas.get(field) or 0
        if amount < 0:
            raise ValueError(f"{field} increment must be non-negative")
        setattr(row, field, (getattr(row, field) or 0) + amount)
    db.commit()
    db.refresh(row)
    logger.info("daily_stats_incremented user_id=%s date=%s deltas=%s", profile.user_id, date, deltas)
    return row


def log_water(db: Session, user_id: int, amount_ml: float, timestamp: datetime) -> WaterLog:
    row = WaterLog(user_id=user_id, amount_ml=amount_ml, timestamp=timestamp)
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("water_log_created user_id=%s amount_ml=%s", user_id, amount_ml)
    return row


def list_daily_stats_between(db: Session, user_id: int, start_date: str, end_date: str) -> list[DailyStats]:
    return (
        db.query(DailyStats)
        .filter(DailyStats.user_id == user_id, DailyStats.date >= start_date, DailyStats.date <= end_date)
        .order_by(DailyStats.date.asc())
        .all()
    )


def get_weekly_stats(
    db: Session, profile: UserProfile, week_start: str, days: int = 7
) -> dict[str, Any]:
    zone = profile.timezone
    last_day = shift_civil_date(week_start, max(1, days) - 1)
    stats = list_daily_stats_between(db, profile.user_id, week_start, last_day)

    range_start, _ = utc_range_for_date(week_start, zone)
    _, range_end = utc_range_for_date(last_day, zone)
    total_meals = (
        db.query(Meal)
        .filter(Meal.user_id == profile.user_id, Meal.meal_time >= range_start, Meal.meal_time < range_end)
        .count()
    )

    days_count = len(stats) or 1
    return {
        "week_start": week_start,
        "week_end": last_day,
        "avg_calories": round_half_up(sum(day.calories_consumed or 0 for day in stats) / days_count),
        "avg_protein_g": round_half_up(sum(day.protein_consumed_g or 0 for day in stats) / days_count),
        "avg_carbs_g": round_half_up(sum(day.carbs_consumed_g or 0 for day in stats) / days_count),
        "avg_fat_g": round_half_up(sum(day.fat_consumed_g or 0 for day in stats) / days_count),
        "total_meals": total_meals,
        "streak_days": sum(1 for day in stats if (day.calories_consumed or 0) > 0),
    }

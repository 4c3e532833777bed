import math
from datetime import date, datetime, timezone
from typing import Optional

DEFAULT_WEIGHT_KG = 70.0
DEFAULT_HEIGHT_CM = 170.0
DEFAULT_AGE_YEARS = 30
MIN_CALORIES = 1200

ACTIVITY_MULTIPLIERS: dict[str, float] = {
    "sedentary": 1.2,
    "light": 1.375,
    "moderate": 1.55,
    "active": 1.725,
    "very_active": 1.9,
}

GENDER_OFFSETS: dict[str, float] = {
    "male": 5.0,
    "female": -161.0,
}
OTHER_GENDER_OFFSET = -78.0

GOAL_ADJUSTMENTS: dict[str, float] = {
    "lose": 0.85,
    "maintain": 1.0,
    "gain": 1.15,
}

PROTEIN_SHARE = 0.3
CARBS_SHARE = 0.4
FAT_SHARE = 0.3


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def age_from_birth_date(birth_date: Optional[str], today: Optional[date] = None) -> Optional[int]:
    if not birth_date:
        return None
    try:
        born = date.fromisoformat(str(birth_date)[:10])
    except ValueError:
        return None
    reference = today or datetime.now(timezone.utc).date()
    return int((reference - born).days // 365.25)


def calculate_daily_targets(
    weight_kg: Optional[float] = None,
    height_cm: Optional[float] = None,
    age_years: Optional[int] = None,
    gender: Optional[str] = None,
    activity_level: Optional[str] = None,
    goal: Optional[str] = None,
) -> dict[str, int]:
    weight = weight_kg or DEFAULT_WEIGHT_KG
    height = height_cm or DEFAULT_HEIGHT_CM
    age = age_years or DEFAULT_AGE_YEARS

    # Mifflin-St Jeor
    bmr = 10 * weight + 6.25 * height - 5 * age + GENDER_OFFSETS.get(gender or "", OTHER_GENDER_OFFSET)
    calories = bmr * ACTIVITY_MULTIPLIERS.get(activity_level or "", ACTIVITY_MULTIPLIERS["sedentary"])
    calories *= GOAL_ADJUSTMENTS.get(goal or "", 1.0)

    calories_goal = max(MIN_CALORIES, round_half_up(calories))
    return {
        "calories_goal": calories_goal,
        "protein_goal_g": round_half_up(calories_goal * PROTEIN_SHARE / 4),
        "carbs_goal_g": round_half_up(calories_goal * CARBS_SHARE / 4),
        "fat_goal_g": round_half_up(calories_goal * FAT_SHARE / 9),
    }


def targets_for_profile(profile) -> dict[str, int]:
    return calculate_daily_targets(
        weight_kg=getattr(profile, "current_weight_kg", None),
        height_cm=getattr(profile, "height_cm", None),
        age_years=age_from_birth_date(getattr(profile, "birth_date", None)),
        gender=getattr(profile, "gender", None),
        activity_level=getattr(profile, "activity_level", None),
        goal=getattr(profile, "goal", None),
    )

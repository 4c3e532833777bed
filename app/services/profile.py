import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.timezones import DEFAULT_TIMEZONE
from app.db.models import User, UserProfile

logger = logging.getLogger("uvicorn.error")

DEFAULT_LANGUAGE = "tr"

PROFILE_FIELDS = {
    "name",
    "gender",
    "birth_date",
    "height_cm",
    "current_weight_kg",
    "target_weight_kg",
    "activity_level",
    "goal",
    "language",
    "timezone",
    "onboarding_completed",
    "onboarding_device_id",
}


def get_user_profile(db: Session, user_id: int) -> Optional[UserProfile]:
    return db.query(UserProfile).filter(UserProfile.user_id == user_id).first()


def ensure_user_profile(db: Session, user: User) -> UserProfile:
    """Return the user's profile, creating it with defaults on first access."""
    profile = get_user_profile(db, user.id)
    if profile:
        if not profile.timezone:
            profile.timezone = DEFAULT_TIMEZONE
        if not profile.language:
            profile.language = DEFAULT_LANGUAGE
        return profile

    now = datetime.now(timezone.utc)
    profile = UserProfile(
        user_id=user.id,
        name=user.name,
        email=user.email,
        timezone=DEFAULT_TIMEZONE,
        language=DEFAULT_LANGUAGE,
        goal="maintain",
        activity_level="sedentary",
        created_at=now,
        updated_at=now,
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    logger.info("user_profile_created user_id=%s", user.id)
    return profile


def update_user_profile(db: Session, user: User, updates: dict[str, Any]) -> UserProfile:
    profile = ensure_user_profile(db, user)
    for key, value in updates.items():
        if key in PROFILE_FIELDS:
            setattr(profile, key, value)
    if updates.get("onboarding_completed") and profile.onboarding_completed_at is None:
        profile.onboarding_completed_at = datetime.now(timezone.utc)
    profile.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(profile)
    return profile

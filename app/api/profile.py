from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.core.targets import targets_for_profile
from app.core.timezones import resolve_zone
from app.db.models import User, UserProfile
from app.db.session import get_db
from app.services.profile import ensure_user_profile, update_user_profile

router = APIRouter(prefix="/profile", tags=["profile"])

Gender = Literal["male", "female", "other"]
ActivityLevel = Literal["sedentary", "light", "moderate", "active", "very_active"]
Goal = Literal["lose", "maintain", "gain"]
Language = Literal["tr", "en"]


class DailyTargets(BaseModel):
    calories_goal: int
    protein_goal_g: int
    carbs_goal_g: int
    fat_goal_g: int


class ProfileResponse(BaseModel):
    user_id: int
    name: Optional[str] = None
    email: Optional[str] = None
    gender: Optional[str] = None
    birth_date: Optional[str] = None
    height_cm: Optional[float] = None
    current_weight_kg: Optional[float] = None
    target_weight_kg: Optional[float] = None
    activity_level: str
    goal: str
    language: str
    timezone: str
    onboarding_completed: bool
    onboarding_completed_at: Optional[datetime] = None
    targets: DailyTargets


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=120)
    gender: Optional[Gender] = None
    birth_date: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    height_cm: Optional[float] = Field(default=None, gt=50, le=272)
    current_weight_kg: Optional[float] = Field(default=None, gt=20, le=500)
    target_weight_kg: Optional[float] = Field(default=None, gt=20, le=500)
    activity_level: Optional[ActivityLevel] = None
    goal: Optional[Goal] = None
    language: Optional[Language] = None
    timezone: Optional[str] = Field(default=None, max_length=64)
    onboarding_completed: Optional[bool] = None
    onboarding_device_id: Optional[str] = Field(default=None, max_length=128)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        name = value.strip()
        if str(resolve_zone(name)) != name and name != "UTC":
            raise ValueError("Unknown timezone")
        return name


def get_current_profile(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> UserProfile:
    return ensure_user_profile(db, user)


def profile_response(profile: UserProfile) -> ProfileResponse:
    return ProfileResponse(
        user_id=profile.user_id,
        name=profile.name,
        email=profile.email,
        gender=profile.gender,
        birth_date=profile.birth_date,
        height_cm=profile.height_cm,
        current_weight_kg=profile.current_weight_kg,
        target_weight_kg=profile.target_weight_kg,
        activity_level=profile.activity_level,
        goal=profile.goal,
        language=profile.language,
        timezone=profile.timezone,
        onboarding_completed=bool(profile.onboarding_completed),
        onboarding_completed_at=profile.onboarding_completed_at,
        targets=DailyTargets(**targets_for_profile(profile)),
    )


@router.get("", response_model=ProfileResponse)
def get_profile(profile: UserProfile = Depends(get_current_profile)) -> ProfileResponse:
    return profile_response(profile)


@router.patch("", response_model=ProfileResponse)
def patch_profile(
    payload: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ProfileResponse:
    profile = update_user_profile(db, user, payload.model_dump(exclude_none=True))
    return profile_response(profile)

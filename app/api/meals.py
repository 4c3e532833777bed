import logging
from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.errors import llm_http_error, not_found
from app.api.profile import get_current_profile
from app.core.config import settings
from app.core.timezones import format_date_in_zone, today_in_zone, utc_range_for_date
from app.db.models import Meal, UserProfile
from app.db.session import get_db
from app.services.image_store import MealImageStore, get_image_store
from app.services.llm import LLMClient, LLMConfigError, LLMRequestError, get_llm_client
from app.services.meals import (
    MealImageUnavailableError,
    MealNotFoundError,
    analysis_payload,
    analyze_meal,
    attach_stored_image,
    confirm_meal,
    create_meal,
    get_meal,
    list_analysis_results,
    list_meals_between,
    update_meal,
)
from app.services.progress import daily_stats_to_dict, increment_daily_stats

router = APIRouter(prefix="/meals", tags=["meals"])
logger = logging.getLogger("uvicorn.error")


class MealItemOut(BaseModel):
    id: str
    position: int
    name: str
    amount: float
    unit: str
    calories: float
    protein_g: float
    carbs_g: float
    fat_g: float


class AnalysisResultOut(BaseModel):
    id: str
    model: str
    confidence: float
    is_selected: bool
    result: dict[str, Any]
    created_at: datetime


class MealOut(BaseModel):
    id: str
    image_url: Optional[str] = None
    label: Optional[str] = None
    source: str
    meal_time: datetime
    status: str
    calories: Optional[float] = None
    protein_g: Optional[float] = None
    carbs_g: Optional[float] = None
    fat_g: Optional[float] = None
    items: list[MealItemOut] = Field(default_factory=list)
    analysis_results: list[AnalysisResultOut] = Field(default_factory=list)


class MealListResponse(BaseModel):
    date: str
    items: list[MealOut]


class MealUpdateRequest(BaseModel):
    label: Optional[str] = Field(default=None, max_length=200)
    meal_time: Optional[datetime] = None
    calories: Optional[float] = Field(default=None, ge=0)
    protein_g: Optional[float] = Field(default=None, ge=0)
    carbs_g: Optional[float] = Field(default=None, ge=0)
    fat_g: Optional[float] = Field(default=None, ge=0)


class AnalyzeOptions(BaseModel):
    language: Optional[str] = Field(default=None, max_length=8)


class AnalyzeRequest(BaseModel):
    model: Optional[str] = Field(default=None, max_length=128)
    options: AnalyzeOptions = Field(default_factory=AnalyzeOptions)


class AnalyzeResponse(BaseModel):
    analysis_result_id: str
    result: dict[str, Any]


class ConfirmRequest(BaseModel):
    analysis_result_id: Optional[str] = None


class MealTotals(BaseModel):
    calories: float
    protein_g: float
    carbs_g: float
    fat_g: float


class ConfirmResponse(BaseModel):
    meal_id: str
    status: str
    totals: MealTotals
    daily_stats: dict[str, Any]


def meal_out(db: Session, meal: Meal, include_details: bool = False) -> MealOut:
    out = MealOut(
        id=meal.id,
        image_url=meal.image_url,
        label=meal.label,
        source=meal.source,
        meal_time=meal.meal_time,
        status=meal.status,
        calories=meal.calories,
        protein_g=meal.protein_g,
        carbs_g=meal.carbs_g,
        fat_g=meal.fat_g,
    )
    if include_details:
        out.items = [
            MealItemOut(
                id=item.id,
                position=item.position,
                name=item.name,
                amount=item.amount,
                unit=item.unit,
                calories=item.calories,
                protein_g=item.protein_g,
                carbs_g=item.carbs_g,
                fat_g=item.fat_g,
            )
            for item in meal.items
        ]
        out.analysis_results = [
            AnalysisResultOut(
                id=row.id,
                model=row.model,
                confidence=row.confidence,
                is_selected=bool(row.is_selected),
                result=analysis_payload(row),
                created_at=row.created_at,
            )
            for row in list_analysis_results(db, meal.id)
        ]
    return out


def _parse_meal_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid meal_time")


def _owned_meal(db: Session, meal_id: str, profile: UserProfile) -> Meal:
    try:
        return get_meal(db, meal_id, user_id=profile.user_id)
    except MealNotFoundError:
        raise not_found("Meal not found")


@router.post("", response_model=MealOut, status_code=status.HTTP_201_CREATED)
def create_meal_entry(
    image: Optional[UploadFile] = File(default=None),
    image_url: Optional[str] = Form(default=None),
    source: str = Form(default="camera"),
    meal_time: Optional[str] = Form(default=None),
    label: Optional[str] = Form(default=None),
    profile: UserProfile = Depends(get_current_profile),
    db: Session = Depends(get_db),
    image_store: MealImageStore = Depends(get_image_store),
) -> MealOut:
    data = image.file.read() if image is not None else b""
    if len(data) > settings.meal_image_max_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Meal image is too large")

    meal = create_meal(
        db,
        user_id=profile.user_id,
        source=source,
        image_url=image_url,
        label=label,
        meal_time=_parse_meal_time(meal_time),
    )
    if data:
        stored = image_store.store(profile.user_id, meal.id, data, image.content_type or "image/jpeg")
        meal = attach_stored_image(db, meal, stored)
    return meal_out(db, meal)


@router.get("", response_model=MealListResponse)
def list_meals(
    on_date: Optional[date] = Query(default=None, alias="date"),
    profile: UserProfile = Depends(get_current_profile),
    db: Session = Depends(get_db),
) -> MealListResponse:
    day = on_date.isoformat() if on_date else today_in_zone(profile.timezone)
    start, end = utc_range_for_date(day, profile.timezone)
    meals = list_meals_between(db, profile.user_id, start, end)
    return MealListResponse(date=day, items=[meal_out(db, meal) for meal in meals])


@router.get("/{meal_id}", response_model=MealOut)
def read_meal(
    meal_id: str, profile: UserProfile = Depends(get_current_profile), db: Session = Depends(get_db)
) -> MealOut:
    return meal_out(db, _owned_meal(db, meal_id, profile), include_details=True)


@router.patch("/{meal_id}", response_model=MealOut)
def patch_meal(
    meal_id: str,
    payload: MealUpdateRequest,
    profile: UserProfile = Depends(get_current_profile),
    db: Session = Depends(get_db),
) -> MealOut:
    meal = _owned_meal(db, meal_id, profile)
    meal = update_meal(db, meal, payload.model_dump(exclude_none=True))
    return meal_out(db, meal, include_details=True)


@router.post("/{meal_id}/analyze", response_model=AnalyzeResponse)
def analyze_meal_entry(
    meal_id: str,
    payload: Optional[AnalyzeRequest] = None,
    profile: UserProfile = Depends(get_current_profile),
    db: Session = Depends(get_db),
    llm_client: LLMClient = Depends(get_llm_client),
) -> AnalyzeResponse:
    request = payload or AnalyzeRequest()
    language = request.options.language or profile.language
    try:
        result, raw = analyze_meal(db, llm_client, meal_id, request.model, language, user_id=profile.user_id)
    except MealNotFoundError:
        raise not_found("Meal not found")
    except MealImageUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except (LLMConfigError, LLMRequestError) as exc:
        logger.exception("meal_analysis_failed user_id=%s meal_id=%s detail=%s", profile.user_id, meal_id, str(exc))
        raise llm_http_error(exc)
    return AnalyzeResponse(analysis_result_id=result.id, result=raw)


@router.post("/{meal_id}/confirm", response_model=ConfirmResponse)
def confirm_meal_entry(
    meal_id: str,
    payload: Optional[ConfirmRequest] = None,
    profile: UserProfile = Depends(get_current_profile),
    db: Session = Depends(get_db),
) -> ConfirmResponse:
    meal = _owned_meal(db, meal_id, profile)
    totals = confirm_meal(
        db, meal.id, analysis_result_id=payload.analysis_result_id if payload else None, user_id=profile.user_id
    )
    day = format_date_in_zone(meal.meal_time, profile.timezone)
    stats = increment_daily_stats(
        db,
        profile,
        day,
        {
            "calories_consumed": totals["calories"],
            "protein_consumed_g": totals["protein_g"],
            "carbs_consumed_g": totals["carbs_g"],
            "fat_consumed_g": totals["fat_g"],
        },
    )
    logger.info("meal_confirmed_rollup user_id=%s meal_id=%s date=%s", profile.user_id, meal.id, day)
    return ConfirmResponse(
        meal_id=meal.id,
        status="confirmed",
        totals=MealTotals(**totals),
        daily_stats=daily_stats_to_dict(stats),
    )

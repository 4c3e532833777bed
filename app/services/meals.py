import base64
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from app.core.timezones import to_utc_naive
from app.db.models import AnalysisResult, Meal, MealItem
from app.services.image_store import StoredMealImage, is_local_placeholder
from app.services.llm import LLMClient

logger = logging.getLogger("uvicorn.error")

DEFAULT_IMAGE_MIME_TYPE = "image/jpeg"
DATA_URL_PATTERN = re.compile(r"^data:(.+?);base64,(.*)$", flags=re.DOTALL)
EDITABLE_MEAL_FIELDS = {"label", "meal_time", "source", "calories", "protein_g", "carbs_g", "fat_g"}


class MealNotFoundError(LookupError):
    pass


class MealImageUnavailableError(ValueError):
    pass


def extract_image_from_data_url(data_url: str) -> Optional[tuple[str, str]]:
    match = DATA_URL_PATTERN.match(data_url or "")
    if not match:
        return None
    return match.group(1), match.group(2)


def analysis_payload(row: AnalysisResult) -> dict[str, Any]:
    try:
        loaded = json.loads(row.raw_response_json or "{}")
    except json.JSONDecodeError:
        return {}
    return loaded if isinstance(loaded, dict) else {}


def get_meal(db: Session, meal_id: str, user_id: Optional[int] = None) -> Meal:
    query = db.query(Meal).filter(Meal.id == meal_id)
    if user_id is not None:
        query = query.filter(Meal.user_id == user_id)
    meal = query.first()
    if not meal:
        raise MealNotFoundError("Meal not found")
    return meal


def create_meal(
    db: Session,
    *,
    user_id: int,
    source: str = "camera",
    image_url: Optional[str] = None,
    label: Optional[str] = None,
    meal_time: Optional[datetime] = None,
) -> Meal:
    now = datetime.now(timezone.utc)
    meal = Meal(
        user_id=user_id,
        image_url=image_url or None,
        label=label or None,
        source=source,
        meal_time=to_utc_naive(meal_time or now),
        status="draft",
        created_at=now,
        updated_at=now,
    )
    db.add(meal)
    db.commit()
    db.refresh(meal)
    logger.info("meal_created meal_id=%s user_id=%s source=%s", meal.id, user_id, source)
    return meal


def attach_stored_image(db: Session, meal: Meal, stored: StoredMealImage) -> Meal:
    meal.image_url = stored.url
    if stored.is_inline:
        meal.image_base64 = stored.base64
        meal.image_mime_type = stored.mime_type
    meal.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(meal)
    return meal


def update_meal(db: Session, meal: Meal, updates: dict[str, Any]) -> Meal:
    for key, value in updates.items():
        if key not in EDITABLE_MEAL_FIELDS:
            continue
        if key == "meal_time" and isinstance(value, datetime):
            value = to_utc_naive(value)
        setattr(meal, key, value)
    meal.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(meal)
    return meal


def list_meals_between(db: Session, user_id: int, start: datetime, end: datetime) -> list[Meal]:
    return (
        db.query(Meal)
        .filter(Meal.user_id == user_id, Meal.meal_time >= start, Meal.meal_time < end)
        .order_by(Meal.meal_time.desc())
        .all()
    )


def list_analysis_results(db: Session, meal_id: str) -> list[AnalysisResult]:
    return (
        db.query(AnalysisResult)
        .filter(AnalysisResult.meal_id == meal_id)
        .order_by(AnalysisResult.created_at.desc())
        .all()
    )


def _fetch_remote_image(url: str, fallback_mime_type: str) -> tuple[str, str]:
    try:
        response = httpx.get(url, timeout=20.0, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise MealImageUnavailableError("Failed to download meal image") from exc
    mime_type = (response.headers.get("content-type") or fallback_mime_type).split(";")[0].strip()
    return base64.b64encode(response.content).decode("ascii"), mime_type or fallback_mime_type


def resolve_meal_image(meal: Meal) -> tuple[str, str]:
    """Image bytes (base64) and MIME type: inline payload, then data URL, then remote fetch."""
    mime_type = meal.image_mime_type or DEFAULT_IMAGE_MIME_TYPE
    if meal.image_base64:
        return meal.image_base64, mime_type

    url = meal.image_url or ""
    inline = extract_image_from_data_url(url)
    if inline:
        inline_mime, inline_data = inline
        return inline_data, inline_mime or mime_type

    if is_local_placeholder(url):
        raise MealImageUnavailableError(
            "Meal image is stored locally and cannot be analyzed. Please re-upload the meal image."
        )
    if url:
        logger.info("meal_image_fetch_started meal_id=%s", meal.id)
        return _fetch_remote_image(url, mime_type)
    raise MealImageUnavailableError("Meal image is missing")


def analyze_meal(
    db: Session, llm_client: LLMClient, meal_id: str, model: Optional[str], language: str, user_id: Optional[int] = None
) -> tuple[AnalysisResult, dict[str, Any]]:
    meal = get_meal(db, meal_id, user_id=user_id)
    image_base64, mime_type = resolve_meal_image(meal)

    raw = llm_client.analyze_image(image_base64, mime_type, language, model=model)
    result = AnalysisResult(
        meal_id=meal.id,
        model=model or "default",
        confidence=float(raw.get("confidence") or 0),
        is_selected=True,
        raw_response_json=json.dumps(raw, ensure_ascii=False, separators=(",", ":")),
        created_at=datetime.now(timezone.utc),
    )
    db.add(result)
    db.commit()
    db.refresh(result)
    logger.info(
        "meal_analysis_stored meal_id=%s analysis_result_id=%s confidence=%s", meal.id, result.id, result.confidence
    )
    return result, raw


def _select_analysis(db: Session, meal_id: str, analysis_result_id: Optional[str]) -> Optional[AnalysisResult]:
    if analysis_result_id:
        chosen = (
            db.query(AnalysisResult)
            .filter(AnalysisResult.id == analysis_result_id, AnalysisResult.meal_id == meal_id)
            .first()
        )
        if chosen:
            chosen.is_selected = True
            return chosen
    return (
        db.query(AnalysisResult)
        .filter(AnalysisResult.meal_id == meal_id)
        .order_by(AnalysisResult.created_at.desc())
        .first()
    )


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def confirm_meal(
    db: Session, meal_id: str, analysis_result_id: Optional[str] = None, user_id: Optional[int] = None
) -> dict[str, float]:
    """Confirm a meal and return its totals; rolling them into daily stats is the caller's job."""
    meal = get_meal(db, meal_id, user_id=user_id)
    selected = _select_analysis(db, meal.id, analysis_result_id)
    raw = analysis_payload(selected) if selected else {}

    macros = raw.get("total_macros")
    if isinstance(macros, dict):
        totals = {
            "calories": _number(raw.get("total_calories")),
            "protein_g": _number(macros.get("p")),
            "carbs_g": _number(macros.get("c")),
            "fat_g": _number(macros.get("f")),
        }
    else:
        totals = {
            "calories": _number(meal.calories),
            "protein_g": _number(meal.protein_g),
            "carbs_g": _number(meal.carbs_g),
            "fat_g": _number(meal.fat_g),
        }

    meal.status = "confirmed"
    meal.calories = totals["calories"]
    meal.protein_g = totals["protein_g"]
    meal.carbs_g = totals["carbs_g"]
    meal.fat_g = totals["fat_g"]
    meal.updated_at = datetime.now(timezone.utc)

    items = raw.get("items")
    if isinstance(items, list):
        for position, item in enumerate(items):
            if not isinstance(item, dict):
                continue
            item_macros = item.get("macros") if isinstance(item.get("macros"), dict) else {}
            db.add(
                MealItem(
                    meal_id=meal.id,
                    position=position,
                    name=str(item.get("name") or ""),
                    amount=_number(item.get("amount")),
                    unit=str(item.get("unit") or "g"),
                    calories=_number(item.get("calories")),
                    protein_g=_number(item_macros.get("p")),
                    carbs_g=_number(item_macros.get("c")),
                    fat_g=_number(item_macros.get("f")),
                )
            )
    db.commit()
    logger.info("meal_confirmed meal_id=%s totals=%s", meal.id, totals)
    return totals

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.targets import targets_for_profile
from app.core.timezones import DEFAULT_TIMEZONE, format_date_in_zone, shift_civil_date
from app.db.models import ChatMemorySummary, ChatMessage, DailyStats, UserProfile

CONTEXT_SEPARATOR = "\n---\n"
CONTEXT_HISTORY_LIMIT = 20

LABELS: dict[str, dict[str, str]] = {
    "tr": {
        "assistant": "Koç",
        "user": "Kullanıcı",
        "unknown": "Bilinmiyor",
        "profile": "Kullanıcı: {name}, Hedef: {goal}, Boy/Kilo: {height} / {weight}",
        "today": "Bugün ({date}) Alınan: {calories} kcal (Hedef {goal} kcal), Protein: {protein}g, Su: {water}ml, Adım: {steps}",
        "weekly": (
            "Son 7 gün ortalamaları: Kalori {calories} kcal, Protein {protein}g, Karb {carbs}g, "
            "Yağ {fat}g, Su {water}L."
        ),
        "weekly_empty": "Son 7 gün verisi bulunamadı.",
        "memory": "Hafıza Özeti: {summary}",
        "memory_empty": "Yeni kullanıcı, sıcak karşıla.",
        "history": "Son Konuşmalar:",
        "current": "Yeni Mesaj: {message}",
    },
    "en": {
        "assistant": "Coach",
        "user": "User",
        "unknown": "Unknown",
        "profile": "User: {name}, Goal: {goal}, Height/Weight: {height} / {weight}",
        "today": "Today ({date}) Consumed: {calories} kcal (Goal {goal} kcal), Protein: {protein}g, Water: {water}ml, Steps: {steps}",
        "weekly": (
            "Last 7 days averages: Calories {calories} kcal, Protein {protein}g, Carbs {carbs}g, "
            "Fat {fat}g, Water {water}L."
        ),
        "weekly_empty": "No data found for the last 7 days.",
        "memory": "Memory Summary: {summary}",
        "memory_empty": "New user, welcome them warmly.",
        "history": "Recent Conversation:",
        "current": "New Message: {message}",
    },
}


def labels_for(language: Optional[str]) -> dict[str, str]:
    return LABELS["en"] if (language or "").lower().startswith("en") else LABELS["tr"]


def _number_text(value: Any) -> str:
    if value is None:
        return "0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _or_dash(value: Any) -> str:
    return _number_text(value) if value else "-"


def render_transcript(messages: list[ChatMessage], language: Optional[str] = None) -> str:
    labels = labels_for(language)
    return "\n".join(
        f"{labels['assistant'] if message.role == 'assistant' else labels['user']}: {message.content or ''}"
        for message in messages
    )


def build_recent_stats_summary(db: Session, profile: UserProfile, now: Optional[datetime] = None) -> str:
    labels = labels_for(profile.language)
    end_date = format_date_in_zone(now or datetime.now(timezone.utc), profile.timezone or DEFAULT_TIMEZONE)
    start_date = shift_civil_date(end_date, -6)
    stats = (
        db.query(DailyStats)
        .filter(DailyStats.user_id == profile.user_id, DailyStats.date >= start_date, DailyStats.date <= end_date)
        .all()
    )
    if not stats:
        return labels["weekly_empty"]

    count = len(stats)
    return labels["weekly"].format(
        calories=f"{sum(day.calories_consumed or 0 for day in stats) / count:.0f}",
        protein=f"{sum(day.protein_consumed_g or 0 for day in stats) / count:.0f}",
        carbs=f"{sum(day.carbs_consumed_g or 0 for day in stats) / count:.0f}",
        fat=f"{sum(day.fat_consumed_g or 0 for day in stats) / count:.0f}",
        water=f"{sum(day.water_ml or 0 for day in stats) / count / 1000:.1f}",
    )


def build_context(
    db: Session,
    profile: UserProfile,
    daily_stats: Optional[DailyStats],
    memory_summary: Optional[ChatMemorySummary],
    recent_messages: list[ChatMessage],
    current_message: str,
    now: Optional[datetime] = None,
) -> str:
    """Render the coaching context blob handed to the chat model.

    `daily_stats` is the caller's snapshot for today and is not re-read here. Only the
    weekly averages are queried.
    """
    labels = labels_for(profile.language)
    moment = now or datetime.now(timezone.utc)
    targets = targets_for_profile(profile)
    today = format_date_in_zone(moment, profile.timezone or DEFAULT_TIMEZONE)

    sections = [
        labels["profile"].format(
            name=profile.name or labels["unknown"],
            goal=profile.goal or "maintain",
            height=_or_dash(profile.height_cm),
            weight=_or_dash(profile.current_weight_kg),
        ),
        labels["today"].format(
            date=today,
            calories=_number_text(daily_stats.calories_consumed if daily_stats else 0),
            goal=targets["calories_goal"],
            protein=_number_text(daily_stats.protein_consumed_g if daily_stats else 0),
            water=_number_text(daily_stats.water_ml if daily_stats else 0),
            steps=_number_text(daily_stats.steps if daily_stats else 0),
        ),
        build_recent_stats_summary(db, profile, now=moment),
        labels["memory"].format(
            summary=(memory_summary.summary if memory_summary and memory_summary.summary else labels["memory_empty"])
        ),
        f"{labels['history']}\n{render_transcript(recent_messages[-CONTEXT_HISTORY_LIMIT:], profile.language)}",
        labels["current"].format(message=current_message),
    ]
    return CONTEXT_SEPARATOR.join(sections)

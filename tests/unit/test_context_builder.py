from datetime import datetime, timezone

from app.core.context_builder import CONTEXT_SEPARATOR, build_context, build_recent_stats_summary
from app.db.models import ChatMemorySummary, ChatMessage, DailyStats

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def _stats(user_id: int, date: str, calories: float, water: float = 0.0) -> DailyStats:
    return DailyStats(
        user_id=user_id,
        date=date,
        calories_goal=2000,
        protein_goal_g=150,
        carbs_goal_g=200,
        fat_goal_g=67,
        calories_consumed=calories,
        protein_consumed_g=100,
        carbs_consumed_g=180,
        fat_consumed_g=60,
        water_ml=water,
        steps=0,
    )


def test_recent_stats_summary_without_records(create_profile, db_session) -> None:
    profile = create_profile()
    assert build_recent_stats_summary(db_session, profile, now=NOW) == "Son 7 gün verisi bulunamadı."

    profile.language = "en"
    assert build_recent_stats_summary(db_session, profile, now=NOW) == "No data found for the last 7 days."


def test_recent_stats_summary_averages_existing_days_only(create_profile, db_session) -> None:
    profile = create_profile()
    db_session.add_all(
        [
            _stats(profile.user_id, "2026-10-18", 2000, water=2000),
            _stats(profile.user_id, "2026-10-13", 1600, water=1000),
            _stats(profile.user_id, "2026-10-11", 9999, water=9999),
        ]
    )
    db_session.commit()

    summary = build_recent_stats_summary(db_session, profile, now=NOW)
    assert "Kalori 1800 kcal" in summary
    assert "Su 1.5L" in summary


def test_build_context_renders_sections_in_order(create_profile, db_session) -> None:
    profile = create_profile(name="Ayşe", goal="lose", height_cm=165.0, current_weight_kg=70.0, language="tr")
    today = _stats(profile.user_id, "2026-10-18", 850, water=750)
    messages = [
        ChatMessage(session_id="s", user_id=profile.user_id, role="user", content="Kahvaltıda ne yemeliyim?"),
        ChatMessage(session_id="s", user_id=profile.user_id, role="assistant", content="Yumurta iyi bir seçim."),
    ]
    memory = ChatMemorySummary(user_id=profile.user_id, summary="Akşamları tatlı krizi yaşıyor.", last_message_at=NOW)

    context = build_context(db_session, profile, today, memory, messages, "Peki öğle yemeği?", now=NOW)
    sections = context.split(CONTEXT_SEPARATOR)

    assert sections[0] == "Kullanıcı: Ayşe, Hedef: lose, Boy/Kilo: 165 / 70"
    assert sections[1].startswith("Bugün (2026-10-18) Alınan: 850 kcal (Hedef ")
    assert "Su: 750ml" in sections[1]
    assert sections[3] == "Hafıza Özeti: Akşamları tatlı krizi yaşıyor."
    assert sections[4].splitlines() == [
        "Son Konuşmalar:",
        "Kullanıcı: Kahvaltıda ne yemeliyim?",
        "Koç: Yumurta iyi bir seçim.",
    ]
    assert sections[5] == "Yeni Mesaj: Peki öğle yemeği?"


def test_build_context_defaults_for_new_user(create_profile, db_session) -> None:
    profile = create_profile(language="en")
    profile.name = None
    messages = [
        ChatMessage(session_id="s", user_id=profile.user_id, role="user", content=f"m{index}") for index in range(25)
    ]

    context = build_context(db_session, profile, None, None, messages, "hello", now=NOW)

    assert "User: Unknown, Goal: maintain, Height/Weight: - / -" in context
    assert "Consumed: 0 kcal" in context
    assert "Memory Summary: New user, welcome them warmly." in context
    assert "User: m4\n" not in context
    assert "User: m5\n" in context

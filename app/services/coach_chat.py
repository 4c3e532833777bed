import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from app.core.context_builder import CONTEXT_HISTORY_LIMIT, build_context, render_transcript
from app.core.safety import RefusalPolicy, is_refused_request, refusal_text
from app.db.models import ChatMemorySummary, ChatMessage, ChatSession, DailyStats, UserProfile, new_document_id
from app.db.session import SessionLocal
from app.services.llm import LLMClient, LLMEmptyResponseError
from app.services.realtime import CHAT_DELTA_EVENT, CHAT_FINAL_EVENT, UserEventSink

logger = logging.getLogger("uvicorn.error")

SUMMARY_WINDOW = 50
STREAM_ERROR_CODE = "stream_failed"


class ChatSessionNotFoundError(LookupError):
    pass


@dataclass
class StreamTask:
    """An unstarted streaming turn; the caller decides where `run` executes."""

    session_id: str
    message_id: str
    run: Callable[[], None]


def image_metadata(image: Optional[dict[str, str]]) -> Optional[dict[str, Any]]:
    if not image or not image.get("data"):
        return None
    data = image["data"]
    padding = len(data) - len(data.rstrip("="))
    return {"mime_type": image.get("mime_type"), "size_bytes": max(0, len(data) * 3 // 4 - padding)}


def _dumps(value: Optional[dict[str, Any]]) -> Optional[str]:
    if not value:
        return None
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class CoachChatService:
    """Coaching chat turns: persistence, context assembly, model calls and streaming.

    Turns are not transactional. Two concurrent turns in one session may each build their
    history without the other's messages.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        sink: UserEventSink,
        session_factory: Callable[[], Session] = SessionLocal,
        refusal_policy: RefusalPolicy = is_refused_request,
    ) -> None:
        self.llm_client = llm_client
        self.sink = sink
        self.session_factory = session_factory
        self.refusal_policy = refusal_policy

    def create_chat_session(self, db: Session, user_id: int) -> ChatSession:
        now = datetime.now(timezone.utc)
        session = ChatSession(user_id=user_id, status="open", created_at=now, updated_at=now)
        db.add(session)
        db.commit()
        db.refresh(session)
        logger.info("chat_session_created user_id=%s session_id=%s", user_id, session.id)
        return session

    def get_chat_session(self, db: Session, user_id: int, session_id: str) -> ChatSession:
        session = (
            db.query(ChatSession).filter(ChatSession.id == session_id, ChatSession.user_id == user_id).first()
        )
        if not session:
            raise ChatSessionNotFoundError("Chat session not found")
        return session

    def list_chat_sessions(self, db: Session, user_id: int) -> list[ChatSession]:
        return (
            db.query(ChatSession)
            .filter(ChatSession.user_id == user_id)
            .order_by(ChatSession.updated_at.desc())
            .all()
        )

    def list_chat_messages(self, db: Session, user_id: int, session_id: str) -> list[ChatMessage]:
        self.get_chat_session(db, user_id, session_id)
        return (
            db.query(ChatMessage)
            .filter(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.created_at.asc())
            .all()
        )

    def get_memory_summary(self, db: Session, user_id: int) -> Optional[ChatMemorySummary]:
        return db.query(ChatMemorySummary).filter(ChatMemorySummary.user_id == user_id).first()

    def _recent_messages(self, db: Session, session_id: str, limit: int) -> list[ChatMessage]:
        rows = (
            db.query(ChatMessage)
            .filter(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.created_at.desc())
            .limit(limit)
            .all()
        )
        return list(reversed(rows))

    def _persist_message(
        self,
        db: Session,
        *,
        session_id: str,
        user_id: int,
        role: str,
        content: str,
        message_id: Optional[str] = None,
        image: Optional[dict[str, str]] = None,
        context_tags: Optional[dict[str, Any]] = None,
    ) -> ChatMessage:
        message = ChatMessage(
            id=message_id or new_document_id(),
            session_id=session_id,
            user_id=user_id,
            role=role,
            content=content,
            image_metadata_json=_dumps(image_metadata(image)),
            context_tags_json=_dumps(context_tags),
            created_at=datetime.now(timezone.utc),
        )
        db.add(message)
        db.commit()
        return message

    def _touch_session(self, db: Session, session_id: str) -> None:
        session = db.query(ChatSession).filter(ChatSession.id == session_id).first()
        if session:
            session.updated_at = datetime.now(timezone.utc)
            db.commit()

    def maybe_update_summary(
        self, db: Session, user_id: int, session_id: str, language: Optional[str] = None
    ) -> bool:
        # Checked against the latest window every turn, so a long session re-summarises on each turn.
        messages = self._recent_messages(db, session_id, SUMMARY_WINDOW)
        if len(messages) < SUMMARY_WINDOW:
            return False

        summary_text = self.llm_client.summarize(render_transcript(messages, language))
        if not summary_text:
            return False

        now = datetime.now(timezone.utc)
        existing = self.get_memory_summary(db, user_id)
        if existing:
            existing.summary = summary_text
            existing.last_message_at = now
            existing.updated_at = now
        else:
            db.add(ChatMemorySummary(user_id=user_id, summary=summary_text, last_message_at=now, updated_at=now))
        db.commit()
        logger.info("chat_memory_summary_updated user_id=%s session_id=%s", user_id, session_id)
        return True

    def _finalize_turn(self, db: Session, user_id: int, session_id: str, language: Optional[str]) -> None:
        self._touch_session(db, session_id)
        self.maybe_update_summary(db, user_id, session_id, language)

    def _prepare_turn(
        self,
        db: Session,
        profile: UserProfile,
        message: str,
        session_id: Optional[str],
        daily_stats: Optional[DailyStats],
        image: Optional[dict[str, str]],
        context_tags: Optional[dict[str, Any]],
    ) -> tuple[str, str, list[dict[str, str]]]:
        if session_id:
            session = self.get_chat_session(db, profile.user_id, session_id)
        else:
            session = self.create_chat_session(db, profile.user_id)

        self._persist_message(
            db,
            session_id=session.id,
            user_id=profile.user_id,
            role="user",
            content=message,
            image=image,
            context_tags=context_tags,
        )
        recent = self._recent_messages(db, session.id, CONTEXT_HISTORY_LIMIT)
        memory = self.get_memory_summary(db, profile.user_id)
        context = build_context(db, profile, daily_stats, memory, recent, message)
        history = [{"role": item.role, "content": item.content or ""} for item in recent]
        logger.info("chat_context_assembled user_id=%s session_id=%s", profile.user_id, session.id)
        return session.id, context, history

    def handle_chat_message(
        self,
        db: Session,
        profile: UserProfile,
        message: str,
        session_id: Optional[str] = None,
        daily_stats: Optional[DailyStats] = None,
        image: Optional[dict[str, str]] = None,
        context_tags: Optional[dict[str, Any]] = None,
    ) -> dict[str, str]:
        resolved_session_id, context, history = self._prepare_turn(
            db, profile, message, session_id, daily_stats, image, context_tags
        )
        if self.refusal_policy(message):
            logger.info("chat_request_refused user_id=%s session_id=%s", profile.user_id, resolved_session_id)
            reply = refusal_text(profile.language)
        else:
            reply = self.llm_client.complete_chat(context, history, image)

        self._persist_message(
            db,
            session_id=resolved_session_id,
            user_id=profile.user_id,
            role="assistant",
            content=reply,
            context_tags=context_tags,
        )
        self._finalize_turn(db, profile.user_id, resolved_session_id, profile.language)
        return {"reply": reply, "session_id": resolved_session_id}

    def handle_chat_message_stream(
        self,
        db: Session,
        profile: UserProfile,
        message: str,
        session_id: Optional[str] = None,
        daily_stats: Optional[DailyStats] = None,
        image: Optional[dict[str, str]] = None,
        context_tags: Optional[dict[str, Any]] = None,
    ) -> StreamTask:
        """Persist the user turn and return the unstarted streaming task for the reply.

        `run` opens its own database session, pushes `chat:delta` and `chat:final` events to
        the sink and persists the assistant message under `message_id`.
        """
        resolved_session_id, context, history = self._prepare_turn(
            db, profile, message, session_id, daily_stats, image, context_tags
        )
        user_id = profile.user_id
        language = profile.language
        refused = self.refusal_policy(message)
        message_id = new_document_id()
        envelope = {"chatId": resolved_session_id, "messageId": message_id}

        def persist_reply(task_db: Session, content: str) -> None:
            self._persist_message(
                task_db,
                session_id=resolved_session_id,
                user_id=user_id,
                role="assistant",
                content=content,
                message_id=message_id,
                context_tags=context_tags,
            )

        def send_final(content: str) -> None:
            self.sink.send_to_user(user_id, CHAT_FINAL_EVENT, {**envelope, "content": content, "isFinal": True})

        def stream_reply(task_db: Session) -> None:
            if refused:
                logger.info("chat_request_refused user_id=%s session_id=%s", user_id, resolved_session_id)
                reply = refusal_text(language)
                send_final(reply)
                persist_reply(task_db, reply)
                return

            progress = {"text": ""}

            def on_delta(delta: str, full_text: str) -> None:
                progress["text"] = full_text
                self.sink.send_to_user(user_id, CHAT_DELTA_EVENT, {**envelope, "delta": delta})

            try:
                streamed = self.llm_client.stream_chat(context, history, image, on_delta)
                final_text = (streamed or progress["text"]).strip()
                if not final_text:
                    raise LLMEmptyResponseError(provider="stream", model="chat", message="Stream produced no text")
            except Exception as exc:
                if progress["text"].strip():
                    logger.exception(
                        "chat_stream_failed_with_partial user_id=%s session_id=%s detail=%s",
                        user_id,
                        resolved_session_id,
                        str(exc),
                    )
                    partial = progress["text"]
                    self.sink.send_to_user(
                        user_id,
                        CHAT_FINAL_EVENT,
                        {**envelope, "error": STREAM_ERROR_CODE, "isFinal": True, "content": partial},
                    )
                    persist_reply(task_db, partial)
                    return

                logger.exception(
                    "chat_stream_failed_falling_back user_id=%s session_id=%s detail=%s",
                    user_id,
                    resolved_session_id,
                    str(exc),
                )
                reply = self.llm_client.complete_chat(context, history, image)
                send_final(reply)
                persist_reply(task_db, reply)
                return

            send_final(final_text)
            persist_reply(task_db, final_text)

        def run() -> None:
            task_db = self.session_factory()
            try:
                try:
                    stream_reply(task_db)
                except Exception as exc:
                    task_db.rollback()
                    logger.exception(
                        "chat_stream_task_failed user_id=%s session_id=%s detail=%s",
                        user_id,
                        resolved_session_id,
                        str(exc),
                    )
                    self.sink.send_to_user(
                        user_id,
                        CHAT_FINAL_EVENT,
                        {**envelope, "error": STREAM_ERROR_CODE, "isFinal": True, "content": ""},
                    )
                self._finalize_turn(task_db, user_id, resolved_session_id, language)
            finally:
                task_db.close()

        return StreamTask(session_id=resolved_session_id, message_id=message_id, run=run)

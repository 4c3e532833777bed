import json
import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.errors import llm_http_error, not_found
from app.api.profile import get_current_profile
from app.core.timezones import today_in_zone
from app.db.models import ChatMessage, UserProfile
from app.db.session import get_db
from app.services.coach_chat import ChatSessionNotFoundError, CoachChatService
from app.services.llm import LLMClient, LLMConfigError, LLMRequestError, get_llm_client
from app.services.progress import get_or_create_daily_stats
from app.services.realtime import UserEventHub, get_event_hub, sse_event_stream

router = APIRouter(prefix="/chat", tags=["chat"])
logger = logging.getLogger("uvicorn.error")


class ChatImage(BaseModel):
    data: str = Field(min_length=1)
    mime_type: str = Field(default="image/jpeg", max_length=64)


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    session_id: Optional[str] = None
    image: Optional[ChatImage] = None
    context: Optional[dict[str, Any]] = None


class ChatReplyResponse(BaseModel):
    reply: str
    session_id: str


class ChatStreamResponse(BaseModel):
    session_id: str
    message_id: str


class ChatSessionItem(BaseModel):
    id: str
    status: str
    created_at: datetime
    updated_at: datetime


class ChatSessionListResponse(BaseModel):
    items: list[ChatSessionItem]


class ChatMessageItem(BaseModel):
    id: str
    role: str
    content: str
    image_metadata: Optional[dict[str, Any]] = None
    context: Optional[dict[str, Any]] = None
    created_at: datetime


class ChatMessagesResponse(BaseModel):
    session_id: str
    messages: list[ChatMessageItem]


def get_chat_service(
    llm_client: LLMClient = Depends(get_llm_client),
    hub: UserEventHub = Depends(get_event_hub),
) -> CoachChatService:
    return CoachChatService(llm_client, hub)


def _loads(raw: Optional[str]) -> Optional[dict[str, Any]]:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _message_item(message: ChatMessage) -> ChatMessageItem:
    return ChatMessageItem(
        id=message.id,
        role=message.role,
        content=message.content or "",
        image_metadata=_loads(message.image_metadata_json),
        context=_loads(message.context_tags_json),
        created_at=message.created_at,
    )


@router.post("", response_model=ChatReplyResponse)
def chat(
    payload: ChatRequest,
    profile: UserProfile = Depends(get_current_profile),
    db: Session = Depends(get_db),
    service: CoachChatService = Depends(get_chat_service),
) -> ChatReplyResponse:
    stats = get_or_create_daily_stats(db, profile, today_in_zone(profile.timezone))
    try:
        result = service.handle_chat_message(
            db,
            profile,
            payload.message,
            session_id=payload.session_id,
            daily_stats=stats,
            image=payload.image.model_dump() if payload.image else None,
            context_tags=payload.context,
        )
    except ChatSessionNotFoundError:
        raise not_found("Chat session not found")
    except (LLMConfigError, LLMRequestError) as exc:
        logger.exception("coach_chat_failed user_id=%s detail=%s", profile.user_id, str(exc))
        raise llm_http_error(exc)
    return ChatReplyResponse(**result)


@router.post("/stream", response_model=ChatStreamResponse, status_code=status.HTTP_202_ACCEPTED)
def chat_stream(
    payload: ChatRequest,
    background_tasks: BackgroundTasks,
    profile: UserProfile = Depends(get_current_profile),
    db: Session = Depends(get_db),
    service: CoachChatService = Depends(get_chat_service),
) -> ChatStreamResponse:
    stats = get_or_create_daily_stats(db, profile, today_in_zone(profile.timezone))
    try:
        task = service.handle_chat_message_stream(
            db,
            profile,
            payload.message,
            session_id=payload.session_id,
            daily_stats=stats,
            image=payload.image.model_dump() if payload.image else None,
            context_tags=payload.context,
        )
    except ChatSessionNotFoundError:
        raise not_found("Chat session not found")
    background_tasks.add_task(task.run)
    logger.info(
        "coach_chat_stream_scheduled user_id=%s session_id=%s message_id=%s",
        profile.user_id,
        task.session_id,
        task.message_id,
    )
    return ChatStreamResponse(session_id=task.session_id, message_id=task.message_id)


@router.get("/sessions", response_model=ChatSessionListResponse)
def list_sessions(
    profile: UserProfile = Depends(get_current_profile),
    db: Session = Depends(get_db),
    service: CoachChatService = Depends(get_chat_service),
) -> ChatSessionListResponse:
    sessions = service.list_chat_sessions(db, profile.user_id)
    return ChatSessionListResponse(
        items=[
            ChatSessionItem(id=row.id, status=row.status, created_at=row.created_at, updated_at=row.updated_at)
            for row in sessions
        ]
    )


@router.get("/sessions/{session_id}/messages", response_model=ChatMessagesResponse)
def list_messages(
    session_id: str,
    profile: UserProfile = Depends(get_current_profile),
    db: Session = Depends(get_db),
    service: CoachChatService = Depends(get_chat_service),
) -> ChatMessagesResponse:
    try:
        messages = service.list_chat_messages(db, profile.user_id, session_id)
    except ChatSessionNotFoundError:
        raise not_found("Chat session not found")
    return ChatMessagesResponse(session_id=session_id, messages=[_message_item(row) for row in messages])


@router.get("/events")
def chat_events(
    profile: UserProfile = Depends(get_current_profile),
    hub: UserEventHub = Depends(get_event_hub),
) -> StreamingResponse:
    return StreamingResponse(
        sse_event_stream(hub, profile.user_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )

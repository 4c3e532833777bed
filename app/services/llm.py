import json
import logging
import re
from typing import Any, Callable, Optional, Protocol

import httpx

from app.core.config import Settings, settings
from app.core.prompts import coach_system_instruction, food_analysis_instruction, summary_instruction

logger = logging.getLogger("uvicorn.error")

PROVIDER = "gemini"
IMAGE_SHARED_PLACEHOLDER = "Kullanıcı bir görsel paylaştı."

DeltaCallback = Callable[[str, str], None]
EventCallback = Callable[[dict[str, Any]], None]


class LLMConfigError(RuntimeError):
    pass


class LLMRequestError(RuntimeError):
    def __init__(self, provider: str, model: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code


class LLMEmptyResponseError(LLMRequestError):
    pass


def clean_json_response(text: str) -> str:
    return re.sub(r"```(?:json)?", "", text or "").strip()


def parse_llm_json(raw_text: str) -> dict[str, Any]:
    cleaned = clean_json_response(raw_text)
    try:
        parsed = json.loads(cleaned)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            parsed = json.loads(cleaned[start : end + 1])
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass
    raise ValueError("Invalid JSON response from LLM")


def create_mock_analysis(language: str) -> dict[str, Any]:
    is_turkish = (language or "").lower().startswith("tr")
    return {
        "meal_name": "Tavuklu Kinoa Tabağı" if is_turkish else "Chicken Quinoa Bowl",
        "total_calories": 480,
        "total_macros": {"p": 32, "c": 46, "f": 18},
        "items": [
            {
                "name": "Tavuk Izgara" if is_turkish else "Grilled Chicken",
                "amount": 150,
                "unit": "g",
                "calories": 248,
                "macros": {"p": 31, "c": 0, "f": 5},
            },
            {
                "name": "Kinoa" if is_turkish else "Quinoa",
                "amount": 120,
                "unit": "g",
                "calories": 170,
                "macros": {"p": 6, "c": 30, "f": 3},
            },
            {
                "name": "Salata" if is_turkish else "Salad",
                "amount": 80,
                "unit": "g",
                "calories": 62,
                "macros": {"p": 2, "c": 10, "f": 2},
            },
        ],
        "confidence": 0.38,
        "health_score": 78,
        "coach_note": (
            "Demo modunda örnek bir analiz gösteriliyor. Gerçek analiz için GEMINI_API_KEY ekleyin."
            if is_turkish
            else "Showing a demo analysis. Add GEMINI_API_KEY for real meal analysis."
        ),
    }


def extract_candidate_text(candidate: Any) -> str:
    if not isinstance(candidate, dict):
        return ""
    parts = (candidate.get("content") or {}).get("parts") or []
    return "".join(str(part.get("text") or "") for part in parts if isinstance(part, dict))


def build_gemini_contents(
    history: list[dict[str, str]], image: Optional[dict[str, str]] = None
) -> list[dict[str, Any]]:
    """Map chat turns to Gemini contents; an image rides only on the final user turn."""
    contents: list[dict[str, Any]] = []
    last_index = len(history) - 1
    for index, item in enumerate(history):
        role = "model" if item.get("role") == "assistant" else "user"
        parts: list[dict[str, Any]] = []
        if item.get("content"):
            parts.append({"text": item["content"]})
        if image and index == last_index and role == "user":
            parts.append({"inlineData": {"data": image["data"], "mimeType": image["mime_type"]}})
        if not parts:
            parts.append({"text": IMAGE_SHARED_PLACEHOLDER})
        contents.append({"role": role, "parts": parts})
    return contents


class DeltaAccumulator:
    """Turns successive model text snapshots into the suffixes not yet delivered.

    A snapshot extending the text already delivered yields only the new suffix; any other
    snapshot is treated as a fresh fragment and delivered whole.
    """

    def __init__(self) -> None:
        self.text = ""

    def feed(self, snapshot: str) -> str:
        if not snapshot:
            return ""
        delta = snapshot
        if self.text and snapshot.startswith(self.text):
            delta = snapshot[len(self.text) :]
        if delta:
            self.text += delta
        return delta


def split_sse_lines(buffer: str) -> tuple[list[str], str]:
    lines = re.split(r"\r?\n", buffer)
    return lines[:-1], lines[-1]


class LLMClient(Protocol):
    def analyze_image(
        self, image_base64: str, mime_type: str, language: str, model: Optional[str] = None
    ) -> dict[str, Any]:
        ...

    def complete_chat(
        self, context: str, history: list[dict[str, str]], image: Optional[dict[str, str]] = None
    ) -> str:
        ...

    def stream_chat(
        self,
        context: str,
        history: list[dict[str, str]],
        image: Optional[dict[str, str]],
        on_delta: DeltaCallback,
        on_event: Optional[EventCallback] = None,
    ) -> str:
        ...

    def summarize(self, conversation: str) -> Optional[str]:
        ...


class GeminiClient:
    def __init__(self, config: Settings, http_client: Optional[httpx.Client] = None) -> None:
        self.config = config
        self._http = http_client or httpx.Client(
            timeout=httpx.Timeout(config.llm_timeout_seconds, connect=config.llm_connect_timeout_seconds)
        )

    def _require_key(self) -> str:
        if not self.config.gemini_api_key:
            raise LLMConfigError("GEMINI_API_KEY is not configured")
        return self.config.gemini_api_key

    def _url(self, model: str, method: str) -> str:
        return f"{self.config.gemini_base_url}/models/{model}:{method}"

    def _generate(self, model: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._http.post(
                self._url(model, "generateContent"),
                params={"key": self._require_key()},
                headers={"Content-Type": "application/json"},
                json=body,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code if exc.response is not None else None
            detail = (exc.response.text or "").strip()[:220] if exc.response is not None else ""
            raise LLMRequestError(
                provider=PROVIDER,
                model=model,
                status_code=status,
                message=f"Gemini request failed (status={status}): {detail or 'no response body'}",
            ) from exc
        except httpx.HTTPError as exc:
            raise LLMRequestError(
                provider=PROVIDER, model=model, message=f"Gemini request failed: {str(exc)[:220]}"
            ) from exc
        try:
            data = response.json()
        except ValueError as exc:
            raise LLMRequestError(provider=PROVIDER, model=model, message="Gemini returned a non-JSON body") from exc
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _first_text(data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        return extract_candidate_text(candidates[0]).strip()

    def analyze_image(
        self, image_base64: str, mime_type: str, language: str, model: Optional[str] = None
    ) -> dict[str, Any]:
        if not self.config.gemini_api_key:
            if not self.config.is_production:
                logger.warning("gemini_key_missing returning mock analysis language=%s", language)
                return create_mock_analysis(language)
            raise LLMConfigError("GEMINI_API_KEY is not configured")

        resolved_model = model or self.config.vision_model
        logger.info("meal_analysis_request_started model=%s mime_type=%s language=%s", resolved_model, mime_type, language)
        data = self._generate(
            resolved_model,
            {
                "contents": [
                    {
                        "role": "user",
                        "parts": [
                            {"text": food_analysis_instruction(language)},
                            {"inlineData": {"data": image_base64, "mimeType": mime_type}},
                        ],
                    }
                ]
            },
        )
        text = self._first_text(data)
        if not text:
            logger.warning("meal_analysis_empty_response model=%s", resolved_model)
            raise LLMEmptyResponseError(provider=PROVIDER, model=resolved_model, message="Gemini returned empty response")
        try:
            return parse_llm_json(text)
        except ValueError as exc:
            raise LLMRequestError(
                provider=PROVIDER, model=resolved_model, message="Gemini analysis was not valid JSON"
            ) from exc

    def _chat_body(
        self, context: str, history: list[dict[str, str]], image: Optional[dict[str, str]]
    ) -> dict[str, Any]:
        return {
            "systemInstruction": {"parts": [{"text": coach_system_instruction(context)}]},
            "contents": build_gemini_contents(history, image),
        }

    def complete_chat(
        self, context: str, history: list[dict[str, str]], image: Optional[dict[str, str]] = None
    ) -> str:
        self._require_key()
        model = self.config.chat_model
        logger.info("coach_chat_request_started model=%s history_count=%s", model, len(history))
        text = self._first_text(self._generate(model, self._chat_body(context, history, image)))
        if not text:
            logger.warning("coach_chat_empty_response model=%s", model)
            raise LLMEmptyResponseError(provider=PROVIDER, model=model, message="Gemini returned empty response")
        return text

    def stream_chat(
        self,
        context: str,
        history: list[dict[str, str]],
        image: Optional[dict[str, str]],
        on_delta: DeltaCallback,
        on_event: Optional[EventCallback] = None,
    ) -> str:
        api_key = self._require_key()
        model = self.config.chat_model
        logger.info("coach_chat_stream_started model=%s history_count=%s", model, len(history))
        accumulator = DeltaAccumulator()

        def handle_line(line: str) -> None:
            payload_text = line.strip()
            if payload_text.startswith("data:"):
                payload_text = payload_text[5:].strip()
            if not payload_text or payload_text == "[DONE]":
                return
            try:
                event = json.loads(payload_text)
                candidates = event.get("candidates") or []
                snapshot = extract_candidate_text(candidates[0]) if candidates else ""
            except (ValueError, AttributeError, TypeError) as exc:
                logger.debug("coach_chat_stream_frame_skipped line=%s detail=%s", payload_text[:200], exc)
                return
            if on_event is not None:
                on_event(event)
            delta = accumulator.feed(snapshot)
            if delta:
                on_delta(delta, accumulator.text)

        try:
            with self._http.stream(
                "POST",
                self._url(model, "streamGenerateContent"),
                params={"key": api_key, "alt": "sse"},
                headers={"Content-Type": "application/json", "Accept": "text/event-stream"},
                json=self._chat_body(context, history, image),
            ) as response:
                if response.status_code >= 400:
                    detail = response.read().decode("utf-8", errors="ignore").strip()[:220]
                    raise LLMRequestError(
                        provider=PROVIDER,
                        model=model,
                        status_code=response.status_code,
                        message=f"Gemini stream failed (status={response.status_code}): {detail or 'no response body'}",
                    )
                buffer = ""
                for chunk in response.iter_text():
                    buffer += chunk
                    lines, buffer = split_sse_lines(buffer)
                    for line in lines:
                        handle_line(line)
                if buffer.strip():
                    handle_line(buffer)
        except httpx.HTTPError as exc:
            raise LLMRequestError(
                provider=PROVIDER, model=model, message=f"Gemini stream failed: {str(exc)[:220]}"
            ) from exc
        return accumulator.text.strip()

    def summarize(self, conversation: str) -> Optional[str]:
        if not self.config.gemini_api_key:
            return None
        model = self.config.summary_model
        try:
            data = self._generate(
                model,
                {"contents": [{"role": "user", "parts": [{"text": summary_instruction(conversation)}]}]},
            )
            return self._first_text(data) or None
        except Exception as exc:
            logger.warning("memory_summary_failed model=%s detail=%s", model, str(exc))
            return None


_default_client: Optional[GeminiClient] = None


def get_llm_client() -> LLMClient:
    global _default_client
    if _default_client is None:
        _default_client = GeminiClient(settings)
    return _default_client

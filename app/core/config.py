import os
from pathlib import Path
from typing import Optional

DEFAULT_VISION_MODEL = "gemini-2.5-flash"
DEFAULT_CHAT_MODEL = "gemini-2.5-pro"
DEFAULT_SUMMARY_MODEL = "gemini-2.5-flash"


class Settings:
    """Environment-derived configuration, built once and handed to collaborators explicitly.

    Model names resolve operation override -> GEMINI_MODEL -> hardcoded default.
    """

    def __init__(self, environ: Optional[dict[str, str]] = None) -> None:
        env = os.environ if environ is None else environ

        def read(name: str, default: str = "") -> str:
            return (env.get(name) or "").strip() or default

        def first(*names: str, default: str) -> str:
            for name in names:
                value = read(name)
                if value:
                    return value
            return default

        self.app_env: str = read("APP_ENV", "development").lower()
        self.gemini_api_key: str = read("GEMINI_API_KEY")
        self.gemini_base_url: str = read(
            "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
        ).rstrip("/")
        self.vision_model: str = first("GEMINI_VISION_MODEL", "GEMINI_MODEL", default=DEFAULT_VISION_MODEL)
        self.chat_model: str = first("GEMINI_CHAT_MODEL", "GEMINI_MODEL", default=DEFAULT_CHAT_MODEL)
        self.summary_model: str = first("GEMINI_SUMMARY_MODEL", "GEMINI_MODEL", default=DEFAULT_SUMMARY_MODEL)
        self.llm_timeout_seconds: float = float(read("LLM_TIMEOUT_SECONDS", "60"))
        self.llm_connect_timeout_seconds: float = float(read("LLM_CONNECT_TIMEOUT_SECONDS", "10"))
        self.media_dir: Path = Path(read("MEDIA_DIR", "data/media")).expanduser()
        self.media_base_url: str = read("MEDIA_BASE_URL").rstrip("/")
        self.meal_image_max_bytes: int = int(read("MEAL_IMAGE_MAX_BYTES", str(8 * 1024 * 1024)))

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


settings = Settings()

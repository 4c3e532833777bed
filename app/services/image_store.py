import base64
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from app.core.config import Settings, settings

logger = logging.getLogger("uvicorn.error")

LOCAL_STORAGE_SCHEME = "local://storage/"


@dataclass(frozen=True)
class StoredMealImage:
    url: str
    base64: Optional[str] = None
    mime_type: Optional[str] = None
    is_inline: bool = False


def _extension_for(mime_type: str) -> str:
    subtype = (mime_type or "").split("/")[-1].lower()
    if subtype == "jpeg":
        return "jpg"
    if re.fullmatch(r"[a-z0-9]{1,8}", subtype):
        return subtype
    return "jpg"


def is_local_placeholder(url: Optional[str]) -> bool:
    return bool(url) and url.startswith(LOCAL_STORAGE_SCHEME)


class MealImageStore:
    """Writes meal photos under the media directory.

    A durable URL is only returned when a public media base URL is configured; otherwise
    the bytes come back inline so the meal row can keep them for later analysis.
    """

    def __init__(self, config: Settings) -> None:
        self.config = config

    def store(self, user_id: int, meal_id: str, data: bytes, mime_type: str) -> StoredMealImage:
        relative = f"meals/{user_id}/{meal_id}.{_extension_for(mime_type)}"
        if self.config.media_base_url:
            try:
                target = Path(self.config.media_dir) / relative
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
                return StoredMealImage(url=f"{self.config.media_base_url}/{relative}")
            except OSError as exc:
                logger.warning("meal_image_write_failed path=%s detail=%s falling back to inline", relative, exc)
        else:
            logger.warning("meal_image_storage_unconfigured path=%s using inline base64", relative)
        return StoredMealImage(
            url=f"{LOCAL_STORAGE_SCHEME}{relative}",
            base64=base64.b64encode(data).decode("ascii"),
            mime_type=mime_type,
            is_inline=True,
        )


def get_image_store() -> MealImageStore:
    return MealImageStore(settings)

import base64

from app.core.config import Settings
from app.services.image_store import MealImageStore, is_local_placeholder


def test_store_returns_inline_fallback_without_public_url(tmp_path) -> None:
    store = MealImageStore(Settings(environ={"MEDIA_DIR": str(tmp_path)}))

    stored = store.store(3, "meal-1", b"jpeg-bytes", "image/jpeg")

    assert stored.is_inline is True
    assert stored.url == "local://storage/meals/3/meal-1.jpg"
    assert is_local_placeholder(stored.url)
    assert base64.b64decode(stored.base64) == b"jpeg-bytes"
    assert stored.mime_type == "image/jpeg"
    assert not (tmp_path / "meals").exists()


def test_store_writes_file_and_returns_durable_url(tmp_path) -> None:
    store = MealImageStore(
        Settings(environ={"MEDIA_DIR": str(tmp_path), "MEDIA_BASE_URL": "https://api.example.com/media"})
    )

    stored = store.store(3, "meal-2", b"png-bytes", "image/png")

    assert stored.is_inline is False
    assert stored.url == "https://api.example.com/media/meals/3/meal-2.png"
    assert (tmp_path / "meals" / "3" / "meal-2.png").read_bytes() == b"png-bytes"
    assert not is_local_placeholder(stored.url)

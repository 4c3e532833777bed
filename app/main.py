from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from app.api.auth import router as auth_router
from app.api.chat import router as chat_router
from app.api.meals import router as meals_router
from app.api.profile import router as profile_router
from app.api.progress import router as progress_router
from app.core.config import settings
from app.db.session import create_tables

app = FastAPI(title="FitCal AI")


@app.on_event("startup")
def on_startup() -> None:
    create_tables()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api")
def api_root() -> dict[str, str]:
    return {"service": "FitCal AI API", "status": "ok"}


app.include_router(auth_router)
app.include_router(profile_router)
app.include_router(meals_router)
app.include_router(progress_router)
app.include_router(chat_router)
app.mount("/media", StaticFiles(directory=str(settings.media_dir), check_dir=False), name="media")

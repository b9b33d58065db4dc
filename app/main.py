import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.container import ServiceContainer, build_container, get_container
from app.logging_config import get_logger, setup_logging
from app.routers import conversations, message

setup_logging(settings.log_level)

app = FastAPI(
    title="Shop Bot API",
    description="Decision core for the Messenger shop assistant",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(message.router)
app.include_router(conversations.router)

app.state.container = build_container()

lock_logger = get_logger("lock_sweeper")


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_lock_sweeper_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("LOCK_SWEEPER_ENABLED"), default=True)


@app.on_event("startup")
async def start_lock_sweeper() -> None:
    if not _is_lock_sweeper_enabled():
        lock_logger.info("Lock sweeper disabled")
        return
    app.state.container.locks.start_sweeper()


@app.on_event("shutdown")
async def stop_lock_sweeper() -> None:
    await app.state.container.locks.stop_sweeper()


@app.get("/health")
async def health(container: ServiceContainer = Depends(get_container)):
    return {"status": "ok", "active_locks": container.locks.lock_count()}

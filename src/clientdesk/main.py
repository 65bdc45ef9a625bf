# src/clientdesk/main.py
"""ASGI application serving the admin dashboard and client portal chat."""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.staticfiles import StaticFiles

from clientdesk import __version__
from clientdesk.api.v1 import chat_router
from clientdesk.backend.context import BackendContext
from clientdesk.core.settings import settings
from clientdesk.services.chat import ChatServices

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
STORAGE_MOUNT = "/storage"

app = FastAPI(
    title=f"{settings.app_name} API",
    description="Realtime chat between account admins and their clients",
    version=settings.app_version,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)
app.add_middleware(GZipMiddleware, minimum_size=1024)

app.include_router(chat_router, prefix=API_PREFIX)


def _mount_local_storage(target: FastAPI) -> None:
    """Expose local attachment buckets under `STORAGE_PUBLIC_URL`."""
    root = Path(settings.storage_root)
    root.mkdir(parents=True, exist_ok=True)
    target.mount(
        STORAGE_MOUNT,
        StaticFiles(directory=root, check_dir=False),
        name="storage",
    )


if settings.storage_backend.lower() == "local":
    _mount_local_storage(app)


@app.on_event("startup")
async def start_backend() -> None:
    # An embedding application (or the test suite) may install its own context.
    if getattr(app.state, "backend", None) is None:
        app.state.backend = BackendContext.from_settings(settings)
        app.state.owns_backend = True
        await app.state.backend.start()
    if getattr(app.state, "chat", None) is None:
        app.state.chat = ChatServices.from_context(app.state.backend, settings)
    logger.info("%s %s ready", settings.app_name, settings.app_version)


@app.on_event("shutdown")
async def stop_backend() -> None:
    if not getattr(app.state, "owns_backend", False):
        return
    backend: BackendContext | None = getattr(app.state, "backend", None)
    if backend is not None:
        await backend.close()
    app.state.backend = None
    app.state.chat = None
    app.state.owns_backend = False


@app.get("/health")
async def health_check() -> dict[str, str | int]:
    """Report liveness and how many realtime channels are open."""
    backend: BackendContext | None = getattr(app.state, "backend", None)
    return {
        "status": "ok",
        "realtime_channels": backend.broker.open_channels if backend else 0,
    }


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "name": f"{settings.app_name} API",
        "version": __version__,
        "docs": app.docs_url or "",
        "chat": f"{API_PREFIX}/chat",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("clientdesk.main:app", host="0.0.0.0", port=8000, reload=settings.debug)

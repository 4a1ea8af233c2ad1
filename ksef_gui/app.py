from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable

from fastapi import FastAPI
from fastapi.responses import FileResponse

from ksef_gui.application.orchestrator import JobOrchestrator
from ksef_gui.routes import events, files, invoices, session
from ksef_gui.workers.refresh import BackgroundRefresher

STATIC_DIR = Path(__file__).resolve().parent / "static"


def create_app(
    orchestrator: JobOrchestrator,
    *,
    refresher: BackgroundRefresher | None = None,
    on_quit: Callable[[], None] | None = None,
) -> FastAPI:
    """Build one isolated server instance around ``orchestrator``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await orchestrator.start()
        if refresher is not None:
            refresher.start()
        try:
            yield
        finally:
            if refresher is not None:
                await refresher.stop()
            await orchestrator.hub.close()
            await orchestrator.close()

    app = FastAPI(title="KSeF GUI", version="0.1.0", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.hub = orchestrator.hub
    app.state.on_quit = on_quit

    app.include_router(events.router)
    app.include_router(session.router)
    app.include_router(invoices.router)
    app.include_router(files.router)

    @app.get("/", include_in_schema=False)
    async def root() -> FileResponse:
        """Serve the single-page UI."""
        return FileResponse(STATIC_DIR / "index.html", media_type="text/html")

    return app

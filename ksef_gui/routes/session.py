from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask

from ksef_gui.application.orchestrator import JobOrchestrator
from ksef_gui.core.schema import ConfigEditorData
from ksef_gui.domain import KsefGuiError
from ksef_gui.routes.dependencies import get_orchestrator
from ksef_gui.routes.errors import JsonErrorRoute

router = APIRouter(tags=["session"], route_class=JsonErrorRoute)

logger = logging.getLogger(__name__)


@router.post("/auth")
async def authenticate(orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    message = await orchestrator.authenticate()
    return {"ok": True, "message": message}


@router.get("/token-status")
async def token_status(orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    return await orchestrator.token_status()


@router.get("/prefs")
async def get_prefs(orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    return orchestrator.preferences()


@router.post("/prefs")
async def save_prefs(payload: dict, orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    await orchestrator.save_preferences(payload)
    return {"ok": True}


@router.get("/config-editor")
async def get_config_editor(orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    return orchestrator.config_editor()


@router.post("/config-editor")
async def save_config_editor(
    payload: ConfigEditorData, orchestrator: JobOrchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    try:
        await orchestrator.save_config(payload)
    except KsefGuiError as exc:
        logger.warning("Config editor save rejected: %s", exc)
        return {"ok": False, "error": str(exc)}
    return {"ok": True}


@router.post("/quit")
async def quit_server(request: Request) -> JSONResponse:
    on_quit = request.app.state.on_quit
    background = BackgroundTask(on_quit) if on_quit is not None else None
    logger.info("Quit requested from the UI")
    return JSONResponse({"ok": True}, background=background)

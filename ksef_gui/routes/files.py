from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, Query

from ksef_gui.application.orchestrator import JobOrchestrator
from ksef_gui.core.files import list_directories, make_directory
from ksef_gui.core.schema import MkdirRequest
from ksef_gui.routes.dependencies import get_orchestrator
from ksef_gui.routes.errors import JsonErrorRoute

router = APIRouter(tags=["files"], route_class=JsonErrorRoute)


@router.get("/browse")
async def browse(
    path: str | None = Query(default=None),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return await asyncio.to_thread(list_directories, path, orchestrator.default_output_dir)


@router.post("/mkdir")
async def mkdir(payload: MkdirRequest) -> dict[str, Any]:
    created = await asyncio.to_thread(make_directory, payload.path)
    return {"ok": True, "path": str(created)}

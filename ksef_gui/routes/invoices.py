from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, Query

from ksef_gui.application.orchestrator import JobOrchestrator
from ksef_gui.core.schema import CheckExistingRequest, DownloadRequest, SearchRequest
from ksef_gui.routes.dependencies import get_orchestrator
from ksef_gui.routes.errors import JsonErrorRoute

router = APIRouter(tags=["invoices"], route_class=JsonErrorRoute)


@router.post("/search")
async def search_invoices(
    payload: SearchRequest, orchestrator: JobOrchestrator = Depends(get_orchestrator)
) -> list[dict[str, Any]]:
    return await orchestrator.search(payload.to_query(), source=payload.source)


@router.get("/cached-invoices")
async def cached_invoices(orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    return orchestrator.cached_results()


@router.post("/download")
async def download_invoices(
    payload: DownloadRequest, orchestrator: JobOrchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    await orchestrator.download(payload.to_job())
    return {"ok": True}


@router.get("/invoice-details")
async def invoice_details(
    idx: int = Query(...), orchestrator: JobOrchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    return await orchestrator.invoice_details(idx)


@router.post("/check-existing")
async def check_existing(
    payload: CheckExistingRequest, orchestrator: JobOrchestrator = Depends(get_orchestrator)
) -> list[dict[str, bool]]:
    return await asyncio.to_thread(
        orchestrator.check_existing,
        payload.output_dir,
        custom_filenames=payload.custom_filenames,
        separate_by_nip=payload.separate_by_nip,
    )

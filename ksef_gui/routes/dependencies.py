from __future__ import annotations

from fastapi import Request

from ksef_gui.application.events import EventHub
from ksef_gui.application.orchestrator import JobOrchestrator


def get_orchestrator(request: Request) -> JobOrchestrator:
    return request.app.state.orchestrator


def get_hub(request: Request) -> EventHub:
    return request.app.state.hub

from __future__ import annotations

import logging
from typing import Any, Callable, Coroutine

from fastapi import HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from ksef_gui.domain import ValidationError

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


class JsonErrorRoute(APIRoute):
    """Route whose failures always come back as ``{"error": message}``."""

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        handler = super().get_route_handler()

        async def json_error_handler(request: Request) -> Response:
            try:
                return await handler(request)
            except HTTPException as exc:
                return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=exc.headers)
            except RequestValidationError as exc:
                return JSONResponse({"error": _validation_message(exc)}, status_code=400)
            except ValidationError as exc:
                return JSONResponse({"error": str(exc)}, status_code=400)
            except Exception as exc:
                logger.exception("%s %s failed", request.method, request.url.path)
                return JSONResponse({"error": str(exc) or exc.__class__.__name__}, status_code=500)

        return json_error_handler

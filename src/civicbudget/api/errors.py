"""Map engine errors to HTTP responses.

Body shape: ``{"error": {"code": "<ErrorName>", "detail": "..."}}``.
``AlreadyFinalized`` also returns the committed allocation under ``data``
so a retrying client sees the same result the first call produced.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from civicbudget.core.errors import AlreadyFinalized, BudgetError

logger = logging.getLogger(__name__)


async def budget_error_handler(request: Request, exc: BudgetError) -> JSONResponse:
    content: dict = {"error": {"code": exc.code, "detail": exc.detail}}
    if isinstance(exc, AlreadyFinalized) and exc.result is not None:
        content["data"] = exc.result.model_dump(mode="json")
    logger.debug("request_rejected path=%s code=%s", request.url.path, exc.code)
    return JSONResponse(status_code=exc.status_code, content=content)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BudgetError, budget_error_handler)

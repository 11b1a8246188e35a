"""Request-scoped dependencies: one repository per request, one transaction per repository.

The transaction commits after the handler returns. The vote and finalize
endpoints commit earlier themselves so the client never sees a receipt for
a write that could still roll back.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request

from civicbudget.config import Settings
from civicbudget.db.engine import get_session
from civicbudget.db.repository import Repository


async def request_repo(request: Request) -> AsyncGenerator[Repository, None]:
    async with get_session(request.app.state.engine) as session:
        yield Repository(session)


async def request_settings(request: Request) -> Settings:
    return request.app.state.settings


RepoDep = Annotated[Repository, Depends(request_repo)]
SettingsDep = Annotated[Settings, Depends(request_settings)]

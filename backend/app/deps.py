from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from app.core.engine import RequestDispatcher
from app.core.environments import EnvironmentStore
from app.core.recorder import Recorder
from app.models import Identity


async def get_env_store(request: Request) -> EnvironmentStore:
    # Single store per app, created in lifespan
    return request.app.state.env_store


async def get_dispatcher(request: Request) -> RequestDispatcher:
    return request.app.state.dispatcher


async def get_recorder(request: Request) -> Recorder:
    return request.app.state.recorder


async def get_identity(request: Request) -> Optional[Identity]:
    """
    X-User-Id / Authorization headers win over the configured defaults.
    No user id at all means anonymous.
    """
    settings = request.app.state.settings
    user_id = request.headers.get("x-user-id") or settings.user_id
    if not user_id:
        return None
    token = settings.access_token
    auth = request.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip() or token
    return Identity(user_id=user_id, access_token=token)


async def require_identity(request: Request) -> Identity:
    identity = await get_identity(request)
    if identity is None:
        raise HTTPException(status_code=401, detail="not logged in")
    return identity

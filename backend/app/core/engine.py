import asyncio
import json
import logging
import socket
from typing import Any, Callable, Optional, Set

import httpx

from app.core.recorder import RecordEntry, Recorder
from app.models import (
    DispatchFailure,
    DispatchOutcome,
    DispatchSuccess,
    ErrorKind,
    Identity,
    RequestTemplate,
    ResolvedRequest,
)

logger = logging.getLogger(__name__)

NO_CONNECTIVITY_MSG = "No internet connection. Please check your network."
CORS_MSG = "CORS or network error: check API or proxy."


def network_available() -> bool:
    """
    Best-effort check for a usable default route. Connecting a UDP socket
    sends nothing; it fails only when the OS has no route out.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("192.0.2.1", 80))
        return True
    except OSError:
        return False


class RemoteError(Exception):
    """The proxy answered with a non-2xx status or an explicit error field."""


def _decode_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError):
        return {"text": response.text}


class RequestDispatcher:
    """
    Sends resolved requests through the proxy collaborator and turns the
    result into a DispatchOutcome. Never raises past dispatch(); the only
    side effect of a success is a background record task.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        proxy_url: str,
        recorder: Optional[Recorder] = None,
        is_online: Callable[[], bool] = network_available,
    ):
        self.client = client
        self.proxy_url = proxy_url
        self.recorder = recorder
        self.is_online = is_online
        self._pending: Set[asyncio.Task] = set()

    async def _classify(self, ex: Exception) -> DispatchFailure:
        message = str(ex) or ex.__class__.__name__
        # The connectivity check touches a socket, keep it off the event loop
        if not await asyncio.to_thread(self.is_online):
            return DispatchFailure(kind=ErrorKind.NO_CONNECTIVITY, reason=NO_CONNECTIVITY_MSG)
        if isinstance(ex, httpx.TransportError) or "cors" in message.lower():
            return DispatchFailure(kind=ErrorKind.NETWORK_OR_CORS, reason=CORS_MSG)
        if isinstance(ex, RemoteError):
            return DispatchFailure(kind=ErrorKind.REMOTE_ERROR, reason=message)
        return DispatchFailure(kind=ErrorKind.REQUEST_FAILED, reason=message or "Request failed.")

    async def _send(self, request: ResolvedRequest) -> Any:
        response = await self.client.post(self.proxy_url, json=request.proxy_payload())
        payload = _decode_payload(response)
        error = payload.get("error") if isinstance(payload, dict) else None
        if not response.is_success or error:
            raise RemoteError(str(error) if error else f"HTTP {response.status_code}")
        return payload

    async def dispatch(
        self,
        request: ResolvedRequest,
        template: Optional[RequestTemplate] = None,
        identity: Optional[Identity] = None,
        collection_id: Optional[str] = None,
    ) -> DispatchOutcome:
        try:
            payload = await self._send(request)
        except Exception as ex:
            failure = await self._classify(ex)
            logger.info("Dispatch to %s failed: %s (%s)", request.final_url, failure.reason, failure.kind.value)
            return failure

        if self.recorder is not None:
            entry = RecordEntry(
                template=template or RequestTemplate(url=request.final_url, method=request.method),
                request=request,
                payload=payload,
                identity=identity,
                collection_id=collection_id,
            )
            self._spawn_record(entry)
        return DispatchSuccess(payload=payload)

    def _spawn_record(self, entry: RecordEntry):
        task = asyncio.create_task(self._record(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _record(self, entry: RecordEntry):
        try:
            await self.recorder.record(entry)
        except Exception:
            logger.error("Recording request %s failed", entry.request.final_url, exc_info=True)

    async def drain(self):
        """Wait for outstanding record tasks."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

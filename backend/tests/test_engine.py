import asyncio
import json
import sys
import threading
from pathlib import Path

import httpx

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.core.engine import CORS_MSG, NO_CONNECTIVITY_MSG, RequestDispatcher
from app.core.recorder import WorkspaceRecorder
from app.core.storage import MemoryStore
from app.models import ErrorKind, Identity, RequestTemplate, ResolvedRequest

PROXY = "http://proxy.test/proxy"


def _request():
    return ResolvedRequest(
        final_url="https://api.x.com/users/42?id=42",
        method="POST",
        headers={"Authorization": "Bearer t"},
        body={"name": "n"},
    )


def _dispatcher(handler, recorder=None, online=True):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RequestDispatcher(client, PROXY, recorder=recorder, is_online=lambda: online)


class FakeRecorder:
    def __init__(self, fail=False):
        self.entries = []
        self.fail = fail

    async def record(self, entry):
        self.entries.append(entry)
        if self.fail:
            raise RuntimeError("store down")


def test_dispatch_posts_descriptor_and_returns_json_payload():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["method"] = request.method
        seen["json"] = json.loads(request.content)
        return httpx.Response(200, json={"status": 201, "data": {"id": 1}})

    outcome = asyncio.run(_dispatcher(handler).dispatch(_request()))

    assert outcome.status == "success"
    assert outcome.payload == {"status": 201, "data": {"id": 1}}
    assert seen["url"] == PROXY
    assert seen["method"] == "POST"
    assert seen["json"] == {
        "url": "https://api.x.com/users/42?id=42",
        "method": "POST",
        "headers": {"Authorization": "Bearer t"},
        "body": {"name": "n"},
    }


def test_non_json_response_is_wrapped_as_text():
    def handler(request):
        return httpx.Response(200, text="<html>ok</html>")

    outcome = asyncio.run(_dispatcher(handler).dispatch(_request()))
    assert outcome.status == "success"
    assert outcome.payload == {"text": "<html>ok</html>"}


def test_non_2xx_is_remote_error_with_status():
    def handler(request):
        return httpx.Response(502, text="bad gateway")

    outcome = asyncio.run(_dispatcher(handler).dispatch(_request()))
    assert outcome.status == "failure"
    assert outcome.kind == ErrorKind.REMOTE_ERROR
    assert outcome.reason == "HTTP 502"


def test_error_field_is_remote_error_even_with_200():
    def handler(request):
        return httpx.Response(200, json={"error": "upstream timed out"})

    outcome = asyncio.run(_dispatcher(handler).dispatch(_request()))
    assert outcome.kind == ErrorKind.REMOTE_ERROR
    assert outcome.reason == "upstream timed out"


def test_transport_error_is_network_or_cors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    outcome = asyncio.run(_dispatcher(handler).dispatch(_request()))
    assert outcome.kind == ErrorKind.NETWORK_OR_CORS
    assert outcome.reason == CORS_MSG


def test_offline_wins_over_other_failures():
    def handler(request):
        raise httpx.ConnectError("dns failure", request=request)

    outcome = asyncio.run(_dispatcher(handler, online=False).dispatch(_request()))
    assert outcome.kind == ErrorKind.NO_CONNECTIVITY
    assert outcome.reason == NO_CONNECTIVITY_MSG


def test_cors_in_error_message_is_network_or_cors():
    def handler(request):
        return httpx.Response(403, json={"error": "Blocked by CORS policy"})

    outcome = asyncio.run(_dispatcher(handler).dispatch(_request()))
    assert outcome.kind == ErrorKind.NETWORK_OR_CORS


def test_success_records_in_background():
    recorder = FakeRecorder()

    def handler(request):
        return httpx.Response(200, json={"ok": True})

    async def run():
        dispatcher = _dispatcher(handler, recorder=recorder)
        template = RequestTemplate(url="{{baseUrl}}/users", method="POST")
        outcome = await dispatcher.dispatch(
            _request(), template=template, identity=Identity(user_id="u1"), collection_id="c1"
        )
        await dispatcher.drain()
        return outcome

    outcome = asyncio.run(run())
    assert outcome.status == "success"
    assert len(recorder.entries) == 1
    entry = recorder.entries[0]
    assert entry.template.url == "{{baseUrl}}/users"
    assert entry.payload == {"ok": True}
    assert entry.collection_id == "c1"


def test_recorder_failure_does_not_change_outcome():
    recorder = FakeRecorder(fail=True)

    def handler(request):
        return httpx.Response(200, json={"ok": True})

    async def run():
        dispatcher = _dispatcher(handler, recorder=recorder)
        outcome = await dispatcher.dispatch(_request(), identity=Identity(user_id="u1"))
        await dispatcher.drain()
        return outcome

    outcome = asyncio.run(run())
    assert outcome.status == "success"
    assert outcome.payload == {"ok": True}
    assert len(recorder.entries) == 1


def test_failure_is_not_recorded():
    recorder = FakeRecorder()

    def handler(request):
        return httpx.Response(500, json={})

    async def run():
        dispatcher = _dispatcher(handler, recorder=recorder)
        outcome = await dispatcher.dispatch(_request(), identity=Identity(user_id="u1"))
        await dispatcher.drain()
        return outcome

    assert asyncio.run(run()).status == "failure"
    assert recorder.entries == []


def test_success_lands_in_workspace_history():
    recorder = WorkspaceRecorder(MemoryStore())

    def handler(request):
        return httpx.Response(200, json={"id": 9})

    async def run():
        dispatcher = _dispatcher(handler, recorder=recorder)
        await dispatcher.dispatch(
            _request(),
            template=RequestTemplate(url="{{baseUrl}}", method="POST", headers_text="Authorization: Bearer {{token}}"),
            identity=Identity(user_id="u1"),
        )
        await dispatcher.drain()
        return await recorder.list_history(Identity(user_id="u1"))

    history = asyncio.run(run())
    assert len(history) == 1
    assert history[0].url == "https://api.x.com/users/42?id=42"
    assert history[0].headers == "Authorization: Bearer {{token}}"
    assert history[0].response == {"id": 9}
    assert history[0].id


def test_connectivity_check_runs_off_the_event_loop_thread():
    check_threads = []

    def is_online():
        check_threads.append(threading.get_ident())
        return True

    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    dispatcher = RequestDispatcher(client, PROXY, is_online=is_online)
    outcome = asyncio.run(dispatcher.dispatch(_request()))

    assert outcome.kind == ErrorKind.NETWORK_OR_CORS
    assert len(check_threads) == 1
    assert check_threads[0] != threading.get_ident()

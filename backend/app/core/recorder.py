import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import BaseModel, ValidationError

from app.core.storage import KeyValueStore
from app.models import (
    Collection,
    CollectionItem,
    HistoryRecord,
    Identity,
    QueryParam,
    RequestTemplate,
    ResolvedRequest,
)

logger = logging.getLogger(__name__)

HISTORY_KEY = "history"
COLLECTIONS_KEY = "collections"
COLLECTION_ITEMS_KEY = "collection_items"


class RecordEntry(BaseModel):
    """What the dispatcher hands over after a successful send."""
    template: RequestTemplate
    request: ResolvedRequest
    payload: Any = None
    identity: Optional[Identity] = None
    collection_id: Optional[str] = None


class RecorderError(Exception):
    """A history or collection write was rejected by the store."""


class UnknownCollection(RecorderError):
    pass


def make_history_record(entry: RecordEntry) -> HistoryRecord:
    return HistoryRecord(
        user_id=entry.identity.user_id,
        url=entry.request.final_url,
        method=entry.request.method,
        headers=entry.template.headers_text or None,
        params=entry.template.params,
        body=entry.request.body,
        response=entry.payload,
    )


def make_collection_item(template: RequestTemplate, collection_id: str, user_id: str,
                         request: Optional[ResolvedRequest] = None, response: Any = None) -> CollectionItem:
    """Saved requests keep the raw URL; sent ones keep the resolved URL."""
    return CollectionItem(
        user_id=user_id,
        collection_id=collection_id,
        url=request.final_url if request else template.url,
        method=template.method,
        headers=template.headers_text or None,
        params=template.params,
        body=request.body if request else (template.body_text or None),
        response=response,
    )


class Recorder(Protocol):
    async def record(self, entry: RecordEntry) -> None: ...

    async def insert_history(self, identity: Identity, record: HistoryRecord) -> HistoryRecord: ...

    async def list_history(self, identity: Identity) -> List[HistoryRecord]: ...

    async def delete_history(self, identity: Identity, history_id: str) -> bool: ...

    async def list_collections(self, identity: Identity) -> List[Collection]: ...

    async def create_collection(self, identity: Identity, name: str) -> Collection: ...

    async def delete_collection(self, identity: Identity, collection_id: str) -> bool: ...

    async def list_collection_items(self, identity: Identity, collection_id: str) -> List[CollectionItem]: ...

    async def add_collection_item(self, identity: Identity, item: CollectionItem) -> CollectionItem: ...

    async def delete_collection_item(self, identity: Identity, collection_id: str, item_id: str) -> bool: ...


async def _record_both(recorder, entry: RecordEntry):
    """
    History first, then the collection item. A failed history insert does
    not stop the collection insert; each failure is logged on its own.
    """
    if entry.identity is None:
        logger.warning("No identity, skipping history save")
        return
    try:
        await recorder.insert_history(entry.identity, make_history_record(entry))
    except Exception:
        logger.error("History insert failed", exc_info=True)

    if entry.collection_id:
        item = make_collection_item(
            entry.template,
            entry.collection_id,
            entry.identity.user_id,
            request=entry.request,
            response=entry.payload,
        )
        try:
            await recorder.add_collection_item(entry.identity, item)
        except Exception:
            logger.error("Collection item insert failed", exc_info=True)


def _validate_rows(model, rows: Any, what: str) -> list:
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise RecorderError(f"Expected a list of {what}, got {type(rows).__name__}")
    try:
        return [model.model_validate(r) for r in rows]
    except (ValidationError, ValueError) as ex:
        raise RecorderError(f"Malformed {what} row: {ex}") from ex


def _validate_row(model, row: Any, what: str):
    # Some backends answer an insert with the inserted rows as a list
    if isinstance(row, list):
        row = row[0] if row else None
    if not isinstance(row, dict):
        raise RecorderError(f"Expected a {what} object, got {type(row).__name__}")
    try:
        return model.model_validate(row)
    except (ValidationError, ValueError) as ex:
        raise RecorderError(f"Malformed {what} row: {ex}") from ex


def _returned_id(data: Any) -> Optional[str]:
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict) and data.get("id") is not None:
        return str(data["id"])
    return None


def template_from_record(record: HistoryRecord) -> RequestTemplate:
    """
    Load a history entry or collection item back into an editable template.
    A parsed body is pretty-printed; a body saved as raw text is kept as-is.
    """
    body = record.body
    if body is None or body == "" or body is False:
        body_text = ""
    elif isinstance(body, str):
        body_text = body
    else:
        body_text = json.dumps(body, indent=2)
    return RequestTemplate(
        url=record.url,
        method=record.method,
        headers_text=record.headers or "",
        body_text=body_text,
        params=record.params or [QueryParam()],
    )


class WorkspaceRecorder:
    """History and collections kept in the local JSON workspace."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def _load(self, key: str) -> List[Dict[str, Any]]:
        rows = self.kv.get(key, [])
        return rows if isinstance(rows, list) else []

    def _append(self, key: str, row: Dict[str, Any]):
        rows = self._load(key)
        rows.append(row)
        self.kv.set(key, rows)

    def _remove(self, key: str, match) -> int:
        rows = self._load(key)
        kept = [r for r in rows if not (isinstance(r, dict) and match(r))]
        removed = len(rows) - len(kept)
        if removed:
            self.kv.set(key, kept)
        return removed

    async def record(self, entry: RecordEntry) -> None:
        await _record_both(self, entry)

    async def insert_history(self, identity: Identity, record: HistoryRecord) -> HistoryRecord:
        record = record.model_copy(update={"id": str(uuid.uuid4())})
        self._append(HISTORY_KEY, record.model_dump())
        return record

    async def list_history(self, identity: Identity) -> List[HistoryRecord]:
        rows = _validate_rows(HistoryRecord, self._load(HISTORY_KEY), "history")
        rows = [r for r in rows if r.user_id == identity.user_id]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)

    async def delete_history(self, identity: Identity, history_id: str) -> bool:
        removed = self._remove(
            HISTORY_KEY,
            lambda r: r.get("id") == history_id and r.get("user_id") == identity.user_id,
        )
        return removed > 0

    async def list_collections(self, identity: Identity) -> List[Collection]:
        rows = _validate_rows(Collection, self._load(COLLECTIONS_KEY), "collection")
        rows = [r for r in rows if r.user_id == identity.user_id]
        return sorted(rows, key=lambda r: r.created_at)

    async def get_collection(self, identity: Identity, collection_id: str) -> Optional[Collection]:
        for col in await self.list_collections(identity):
            if col.id == collection_id:
                return col
        return None

    async def create_collection(self, identity: Identity, name: str) -> Collection:
        col = Collection(id=str(uuid.uuid4()), user_id=identity.user_id, name=name or "New Collection")
        self._append(COLLECTIONS_KEY, col.model_dump())
        return col

    async def delete_collection(self, identity: Identity, collection_id: str) -> bool:
        """Removes the collection together with its items."""
        removed = self._remove(
            COLLECTIONS_KEY,
            lambda r: r.get("id") == collection_id and r.get("user_id") == identity.user_id,
        )
        if not removed:
            return False
        self._remove(
            COLLECTION_ITEMS_KEY,
            lambda r: r.get("collection_id") == collection_id and r.get("user_id") == identity.user_id,
        )
        return True

    async def list_collection_items(self, identity: Identity, collection_id: str) -> List[CollectionItem]:
        rows = _validate_rows(CollectionItem, self._load(COLLECTION_ITEMS_KEY), "collection item")
        rows = [r for r in rows if r.user_id == identity.user_id and r.collection_id == collection_id]
        return sorted(rows, key=lambda r: r.created_at)

    async def add_collection_item(self, identity: Identity, item: CollectionItem) -> CollectionItem:
        if await self.get_collection(identity, item.collection_id) is None:
            raise UnknownCollection(f"Unknown collection '{item.collection_id}'")
        item = item.model_copy(update={"id": str(uuid.uuid4()), "user_id": identity.user_id})
        self._append(COLLECTION_ITEMS_KEY, item.model_dump())
        return item

    async def delete_collection_item(self, identity: Identity, collection_id: str, item_id: str) -> bool:
        removed = self._remove(
            COLLECTION_ITEMS_KEY,
            lambda r: (
                r.get("id") == item_id
                and r.get("collection_id") == collection_id
                and r.get("user_id") == identity.user_id
            ),
        )
        return removed > 0


class BackendRecorder:
    """
    History and collections owned by the remote backend API.
    Every call carries the caller's bearer token.
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str):
        self.client = client
        self.base_url = base_url.rstrip("/")

    def _headers(self, identity: Identity) -> Dict[str, str]:
        if identity.access_token:
            return {"Authorization": f"Bearer {identity.access_token}"}
        return {}

    async def _request(self, method: str, path: str, identity: Identity, payload: Any = None) -> httpx.Response:
        try:
            return await self.client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(identity),
                json=payload,
            )
        except httpx.HTTPError as ex:
            raise RecorderError(f"{method} {path} failed: {ex}") from ex

    async def _call(self, method: str, path: str, identity: Identity, payload: Any = None) -> Any:
        response = await self._request(method, path, identity, payload)
        try:
            response.raise_for_status()
        except httpx.HTTPError as ex:
            raise RecorderError(f"{method} {path} failed: {ex}") from ex
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as ex:
            raise RecorderError(f"{method} {path} returned non-JSON body") from ex

    async def _delete(self, path: str, identity: Identity) -> bool:
        """False when the backend does not know the record."""
        response = await self._request("DELETE", path, identity)
        if response.status_code == 404:
            return False
        try:
            response.raise_for_status()
        except httpx.HTTPError as ex:
            raise RecorderError(f"DELETE {path} failed: {ex}") from ex
        return True

    async def record(self, entry: RecordEntry) -> None:
        await _record_both(self, entry)

    async def insert_history(self, identity: Identity, record: HistoryRecord) -> HistoryRecord:
        data = await self._call("POST", "/history", identity, record.model_dump(exclude={"id"}))
        returned_id = _returned_id(data)
        return record.model_copy(update={"id": returned_id}) if returned_id else record

    async def list_history(self, identity: Identity) -> List[HistoryRecord]:
        data = await self._call("GET", "/history", identity)
        return _validate_rows(HistoryRecord, data, "history")

    async def delete_history(self, identity: Identity, history_id: str) -> bool:
        return await self._delete(f"/history/{history_id}", identity)

    async def list_collections(self, identity: Identity) -> List[Collection]:
        data = await self._call("GET", "/collections", identity)
        return _validate_rows(Collection, data, "collection")

    async def create_collection(self, identity: Identity, name: str) -> Collection:
        data = await self._call("POST", "/collections", identity, {"name": name, "user_id": identity.user_id})
        return _validate_row(Collection, data, "collection")

    async def delete_collection(self, identity: Identity, collection_id: str) -> bool:
        # The backend owns the cascade to the collection's items
        return await self._delete(f"/collections/{collection_id}", identity)

    async def list_collection_items(self, identity: Identity, collection_id: str) -> List[CollectionItem]:
        data = await self._call("GET", f"/collections/{collection_id}/items", identity)
        return _validate_rows(CollectionItem, data, "collection item")

    async def add_collection_item(self, identity: Identity, item: CollectionItem) -> CollectionItem:
        data = await self._call(
            "POST",
            f"/collections/{item.collection_id}/items",
            identity,
            item.model_dump(exclude={"id"}),
        )
        returned_id = _returned_id(data)
        return item.model_copy(update={"id": returned_id}) if returned_id else item

    async def delete_collection_item(self, identity: Identity, collection_id: str, item_id: str) -> bool:
        return await self._delete(f"/collections/{collection_id}/items/{item_id}", identity)

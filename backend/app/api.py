from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from app.models import (
    Collection,
    CollectionCreate,
    CollectionItem,
    CurrentEnvironment,
    DispatchOutcome,
    Environment,
    EnvironmentCreate,
    EnvironmentPatch,
    HistoryRecord,
    Identity,
    RequestTemplate,
    ResolvePreview,
    SendRequest,
)
from app.core.builder import build_request, unresolved_names
from app.core.engine import RequestDispatcher
from app.core.environments import EnvironmentStore
from app.core.errors import MalformedBody
from app.core.recorder import (
    Recorder,
    RecorderError,
    UnknownCollection,
    make_collection_item,
    template_from_record,
)
from app.deps import get_dispatcher, get_env_store, get_identity, get_recorder, require_identity

router = APIRouter()


# --- Environments ---
@router.get("/environments", response_model=List[Environment])
async def list_environments(store: EnvironmentStore = Depends(get_env_store)):
    return store.list()


@router.post("/environments")
async def create_environment(payload: EnvironmentCreate, store: EnvironmentStore = Depends(get_env_store)):
    env_id = store.create(payload.name, payload.variables)
    return {"id": env_id}


@router.get("/environments/current", response_model=Optional[Environment])
async def get_current_environment(store: EnvironmentStore = Depends(get_env_store)):
    return store.current()


@router.put("/environments/current", response_model=CurrentEnvironment)
async def set_current_environment(payload: CurrentEnvironment, store: EnvironmentStore = Depends(get_env_store)):
    store.set_current(payload.id)
    return CurrentEnvironment(id=store.current_id)


@router.post("/environments/refresh", response_model=List[Environment])
async def refresh_environments(store: EnvironmentStore = Depends(get_env_store)):
    store.refresh()
    return store.list()


@router.patch("/environments/{env_id}")
async def update_environment(env_id: str, patch: EnvironmentPatch, store: EnvironmentStore = Depends(get_env_store)):
    if not store.update(env_id, name=patch.name, variables=patch.variables):
        raise HTTPException(status_code=404, detail="environment not found")
    return {"status": "ok"}


@router.delete("/environments/{env_id}")
async def delete_environment(env_id: str, store: EnvironmentStore = Depends(get_env_store)):
    if not store.delete(env_id):
        raise HTTPException(status_code=404, detail="environment not found")
    return {"status": "ok", "current": store.current_id}


# --- Requests ---
@router.post("/requests/resolve", response_model=ResolvePreview)
async def resolve_request(template: RequestTemplate, store: EnvironmentStore = Depends(get_env_store)):
    env_vars = store.variables()
    try:
        resolved = build_request(template, env_vars)
    except MalformedBody as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    return ResolvePreview(request=resolved, unresolved=unresolved_names(template, env_vars))


@router.post("/requests/send", response_model=DispatchOutcome)
async def send_request(
    payload: SendRequest,
    store: EnvironmentStore = Depends(get_env_store),
    dispatcher: RequestDispatcher = Depends(get_dispatcher),
    identity: Optional[Identity] = Depends(get_identity),
):
    try:
        resolved = build_request(payload.template, store.variables())
    except MalformedBody as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    return await dispatcher.dispatch(
        resolved,
        template=payload.template,
        identity=identity,
        collection_id=payload.collection_id,
    )


# --- History ---
@router.get("/history", response_model=List[HistoryRecord])
async def get_history(identity: Identity = Depends(require_identity), recorder: Recorder = Depends(get_recorder)):
    try:
        return await recorder.list_history(identity)
    except RecorderError as ex:
        raise HTTPException(status_code=502, detail=str(ex))


@router.get("/history/{history_id}/template", response_model=RequestTemplate)
async def load_history_item(
    history_id: str,
    identity: Identity = Depends(require_identity),
    recorder: Recorder = Depends(get_recorder),
):
    """A history entry turned back into an editable template."""
    try:
        rows = await recorder.list_history(identity)
    except RecorderError as ex:
        raise HTTPException(status_code=502, detail=str(ex))
    for row in rows:
        if row.id == history_id:
            return template_from_record(row)
    raise HTTPException(status_code=404, detail="history entry not found")


@router.delete("/history/{history_id}")
async def delete_history_item(
    history_id: str,
    identity: Identity = Depends(require_identity),
    recorder: Recorder = Depends(get_recorder),
):
    try:
        found = await recorder.delete_history(identity, history_id)
    except RecorderError as ex:
        raise HTTPException(status_code=502, detail=str(ex))
    if not found:
        raise HTTPException(status_code=404, detail="history entry not found")
    return {"status": "ok"}


# --- Collections ---
@router.get("/collections", response_model=List[Collection])
async def list_collections(identity: Identity = Depends(require_identity), recorder: Recorder = Depends(get_recorder)):
    try:
        return await recorder.list_collections(identity)
    except RecorderError as ex:
        raise HTTPException(status_code=502, detail=str(ex))


@router.post("/collections", response_model=Collection)
async def create_collection(
    payload: CollectionCreate,
    identity: Identity = Depends(require_identity),
    recorder: Recorder = Depends(get_recorder),
):
    try:
        return await recorder.create_collection(identity, payload.name)
    except RecorderError as ex:
        raise HTTPException(status_code=502, detail=str(ex))


@router.get("/collections/{collection_id}/items", response_model=List[CollectionItem])
async def get_collection_items(
    collection_id: str,
    identity: Identity = Depends(require_identity),
    recorder: Recorder = Depends(get_recorder),
):
    try:
        return await recorder.list_collection_items(identity, collection_id)
    except RecorderError as ex:
        raise HTTPException(status_code=502, detail=str(ex))


@router.post("/collections/{collection_id}/items", response_model=CollectionItem)
async def save_collection_item(
    collection_id: str,
    template: RequestTemplate,
    identity: Identity = Depends(require_identity),
    recorder: Recorder = Depends(get_recorder),
):
    """Save a template as-is, without resolving or sending it."""
    item = make_collection_item(template, collection_id, identity.user_id)
    try:
        return await recorder.add_collection_item(identity, item)
    except UnknownCollection:
        raise HTTPException(status_code=404, detail="collection not found")
    except RecorderError as ex:
        raise HTTPException(status_code=502, detail=str(ex))


@router.delete("/collections/{collection_id}")
async def delete_collection(
    collection_id: str,
    identity: Identity = Depends(require_identity),
    recorder: Recorder = Depends(get_recorder),
):
    try:
        found = await recorder.delete_collection(identity, collection_id)
    except RecorderError as ex:
        raise HTTPException(status_code=502, detail=str(ex))
    if not found:
        raise HTTPException(status_code=404, detail="collection not found")
    return {"status": "ok"}


@router.get("/collections/{collection_id}/items/{item_id}/template", response_model=RequestTemplate)
async def load_collection_item(
    collection_id: str,
    item_id: str,
    identity: Identity = Depends(require_identity),
    recorder: Recorder = Depends(get_recorder),
):
    try:
        items = await recorder.list_collection_items(identity, collection_id)
    except RecorderError as ex:
        raise HTTPException(status_code=502, detail=str(ex))
    for item in items:
        if item.id == item_id:
            return template_from_record(item)
    raise HTTPException(status_code=404, detail="collection item not found")


@router.delete("/collections/{collection_id}/items/{item_id}")
async def delete_collection_item(
    collection_id: str,
    item_id: str,
    identity: Identity = Depends(require_identity),
    recorder: Recorder = Depends(get_recorder),
):
    try:
        found = await recorder.delete_collection_item(identity, collection_id, item_id)
    except RecorderError as ex:
        raise HTTPException(status_code=502, detail=str(ex))
    if not found:
        raise HTTPException(status_code=404, detail="collection item not found")
    return {"status": "ok"}

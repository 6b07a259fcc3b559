from __future__ import annotations
from enum import Enum
from typing import List, Optional, Dict, Any, Union, Literal
from pydantic import BaseModel, Field, field_validator
from datetime import datetime
import json
import time

HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH"]

# --- Environment Models ---

class Environment(BaseModel):
    id: str
    name: str = "New Environment"
    variables: Dict[str, str] = {}

class EnvironmentCreate(BaseModel):
    name: str = ""
    variables: Optional[Dict[str, str]] = None

class EnvironmentPatch(BaseModel):
    name: Optional[str] = None
    variables: Optional[Dict[str, str]] = None

class CurrentEnvironment(BaseModel):
    id: Optional[str] = None

# --- Request Models ---

class QueryParam(BaseModel):
    key: str = ""
    value: str = ""

class RequestTemplate(BaseModel):
    url: str = ""
    method: HttpMethod = "GET"
    params: List[QueryParam] = []
    headers_text: str = ""  # JSON object or "Key: Value" lines
    body_text: str = ""

class ResolvedRequest(BaseModel):
    final_url: str
    method: HttpMethod
    headers: Dict[str, str] = {}
    body: Any = None

    def proxy_payload(self) -> Dict[str, Any]:
        """Shape expected by the proxy collaborator."""
        return {
            "url": self.final_url,
            "method": self.method,
            "headers": dict(self.headers),
            "body": self.body,
        }

class ResolvePreview(BaseModel):
    request: ResolvedRequest
    unresolved: List[str] = []

class SendRequest(BaseModel):
    template: RequestTemplate
    collection_id: Optional[str] = None

# --- Outcome Models ---

class ErrorKind(str, Enum):
    MALFORMED_BODY = "malformed_body"
    NO_CONNECTIVITY = "no_connectivity"
    NETWORK_OR_CORS = "network_or_cors"
    REMOTE_ERROR = "remote_error"
    REQUEST_FAILED = "request_failed"

class DispatchSuccess(BaseModel):
    status: Literal["success"] = "success"
    payload: Any = None

class DispatchFailure(BaseModel):
    status: Literal["failure"] = "failure"
    kind: ErrorKind
    reason: str

DispatchOutcome = Union[DispatchSuccess, DispatchFailure]

# --- Identity ---

class Identity(BaseModel):
    user_id: str
    access_token: Optional[str] = None

# --- History / Collection Models ---

def _coerce_id(value: Any) -> Any:
    # Remote stores may hand out integer ids
    return str(value) if isinstance(value, int) and not isinstance(value, bool) else value

def _coerce_timestamp(value: Any) -> Any:
    """Epoch seconds, numeric strings and ISO-8601 strings ("...Z" included)."""
    if not isinstance(value, str):
        return value
    try:
        return float(value)
    except ValueError:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()

class HistoryRecord(BaseModel):
    id: Optional[str] = None  # assigned by the store
    user_id: str
    url: str
    method: HttpMethod
    headers: Optional[str] = None  # raw headers text as typed
    params: List[QueryParam] = []
    body: Any = None
    response: Any = None
    created_at: float = Field(default_factory=time.time)

    coerce_ids = field_validator("id", "user_id", mode="before")(_coerce_id)
    coerce_created_at = field_validator("created_at", mode="before")(_coerce_timestamp)

    @field_validator("params", mode="before")
    @classmethod
    def params_from_text(cls, value: Any) -> Any:
        # Stored as a JSON string by some backends
        if value is None:
            return []
        if isinstance(value, str):
            return json.loads(value) if value.strip() else []
        return value

class CollectionItem(HistoryRecord):
    collection_id: str

    coerce_collection_id = field_validator("collection_id", mode="before")(_coerce_id)

class Collection(BaseModel):
    id: Optional[str] = None
    user_id: str
    name: str = "New Collection"
    created_at: float = Field(default_factory=time.time)

    coerce_ids = field_validator("id", "user_id", mode="before")(_coerce_id)
    coerce_created_at = field_validator("created_at", mode="before")(_coerce_timestamp)

class CollectionCreate(BaseModel):
    name: str = "New Collection"

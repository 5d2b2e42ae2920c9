"""
Worker protocol - messages exchanged with the code running inside a page.

Requests and responses are tagged unions keyed on ``type``. Anything crossing
the page boundary is validated here; unknown tags are rejected instead of
being silently ignored.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import WorkerProtocolError


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ============== Requests ==============

class SendMessageRequest(_WireModel):
    type: Literal["send-message"] = "send-message"
    chat_id: str = Field(alias="chatId")
    text: str


class FetchHtmlRequest(_WireModel):
    type: Literal["fetch-html"] = "fetch-html"
    url: str


class ListChatsRequest(_WireModel):
    type: Literal["list-chats"] = "list-chats"


WorkerRequest = Annotated[
    Union[SendMessageRequest, FetchHtmlRequest, ListChatsRequest],
    Field(discriminator="type"),
]


# ============== Responses ==============

class SendMessageResponse(_WireModel):
    success: bool
    error: Optional[str] = None


class FetchHtmlResponse(_WireModel):
    success: bool
    html: Optional[str] = None
    error: Optional[str] = None


class ChatItem(_WireModel):
    chat_id: str = Field(alias="chatId")
    name: str = ""
    url: Optional[str] = None
    is_active: bool = Field(default=False, alias="isActive")


class ListChatsResponse(_WireModel):
    success: bool
    chats: List[ChatItem] = Field(default_factory=list)
    error: Optional[str] = None


WorkerResponse = Union[SendMessageResponse, FetchHtmlResponse, ListChatsResponse]

RESPONSE_TYPES: Dict[str, Type[_WireModel]] = {
    "send-message": SendMessageResponse,
    "fetch-html": FetchHtmlResponse,
    "list-chats": ListChatsResponse,
}


# ============== Announcements ==============

class ReadyAnnouncement(_WireModel):
    """Unsolicited message a worker sends once it sits on a conversation page."""
    type: Literal["ready"] = "ready"
    chat_id: str = Field(alias="chatId")


_request_adapter = TypeAdapter(WorkerRequest)


def parse_worker_request(payload: Dict[str, Any]):
    """Validate an outgoing/incoming request envelope."""
    try:
        return _request_adapter.validate_python(payload)
    except ValidationError as e:
        raise WorkerProtocolError(f"Invalid worker request {payload.get('type')!r}: {e}") from e


def parse_worker_message(payload: Any) -> ReadyAnnouncement:
    """
    Validate an unsolicited message coming from a worker.

    Only ``ready`` announcements are accepted; any other tag is rejected.
    """
    if not isinstance(payload, dict):
        raise WorkerProtocolError(f"Worker message must be an object, got {type(payload).__name__}")
    if payload.get("type") != "ready":
        raise WorkerProtocolError(f"Unknown worker message type: {payload.get('type')!r}")
    try:
        return ReadyAnnouncement.model_validate(payload)
    except ValidationError as e:
        raise WorkerProtocolError(f"Invalid ready announcement: {e}") from e


def parse_worker_response(request_type: str, payload: Any) -> WorkerResponse:
    """Validate the reply to a request of ``request_type``."""
    model = RESPONSE_TYPES.get(request_type)
    if model is None:
        raise WorkerProtocolError(f"Unknown worker request type: {request_type!r}")
    if not isinstance(payload, dict):
        raise WorkerProtocolError(f"Worker returned no response for '{request_type}'")
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise WorkerProtocolError(f"Malformed '{request_type}' response: {e}") from e

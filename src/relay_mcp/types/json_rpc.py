"""JSON-RPC 2.0 envelopes carried by the MCP transports."""

from typing import Annotated, Any, Final, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

JSONRPC_VERSION: Final[str] = "2.0"

PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603
# Implementation-defined range; used for transport/session faults.
CONNECTION_CLOSED: Final[int] = -32000

RequestId = Annotated[int, Field(strict=True)] | str


class JSONRPCBase(BaseModel):
    """Base class for all JSON-RPC messages."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


MethodT = TypeVar("MethodT", bound=str)
ParamsT = TypeVar("ParamsT", bound=BaseModel | dict[str, Any] | None)


class RequestBase(JSONRPCBase, Generic[MethodT, ParamsT]):
    """A request that expects a response."""

    id: RequestId
    method: MethodT
    params: ParamsT


# noinspection PyTypeChecker
class JSONRPCRequest(RequestBase[str, dict[str, Any] | None]):
    """A request that expects a response."""

    params: dict[str, Any] | None = None


class NotificationBase(JSONRPCBase, Generic[MethodT, ParamsT]):
    """A notification which does not expect a response."""

    method: MethodT
    params: ParamsT


# noinspection PyTypeChecker
class JSONRPCNotification(NotificationBase[str, dict[str, Any] | None]):
    """A notification which does not expect a response."""

    params: dict[str, Any] | None = None


class ErrorData(BaseModel):
    """Error information in a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: Any | None = None


ResultT = TypeVar("ResultT", bound=BaseModel | dict[str, Any])


class ResultResponseBase(JSONRPCBase, Generic[ResultT]):
    """A successful (non-error) response to a request."""

    id: RequestId
    result: ResultT


class JSONRPCResultResponse(ResultResponseBase[dict[str, Any]]):
    """A successful (non-error) response to a request."""


class JSONRPCErrorResponse(JSONRPCBase):
    """A response to a request that indicates an error occurred."""

    id: RequestId | None = None
    error: ErrorData


JSONRPCResponse = JSONRPCResultResponse | JSONRPCErrorResponse
JSONRPCMessage = JSONRPCRequest | JSONRPCNotification | JSONRPCResponse

JSONRPCMessageAdapter: TypeAdapter[JSONRPCMessage] = TypeAdapter(JSONRPCMessage)


def error_response(
    code: int,
    message: str,
    *,
    request_id: RequestId | None = None,
    data: Any | None = None,
) -> JSONRPCErrorResponse:
    """Build an error envelope. `request_id` stays None when no id can be echoed."""
    return JSONRPCErrorResponse(id=request_id, error=ErrorData(code=code, message=message, data=data))


def dump_message(message: JSONRPCMessage) -> dict[str, Any]:
    """Serialize a message for the wire.

    `id` is always kept on error responses, where JSON-RPC requires `null` when
    the request id could not be determined.
    """
    payload = message.model_dump(by_alias=True, exclude_none=True)
    if isinstance(message, JSONRPCErrorResponse):
        payload["id"] = message.id
    return payload

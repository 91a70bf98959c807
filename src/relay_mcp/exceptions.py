"""Exception hierarchy for relay-mcp."""

from typing import Any

from relay_mcp.types.json_rpc import ErrorData


class RelayError(Exception):
    """Base error for relay-mcp.

    Attributes:
        code: A stable, machine readable error category.
        details: Optional structured context for logging.
    """

    code: str = "RELAY_ERROR"

    def __init__(self, message: str, details: Any | None = None):
        super().__init__(message)
        self.details = details


class ConfigurationError(RelayError):
    """Configuration could not be loaded or failed validation."""

    code = "CONFIGURATION_ERROR"


class APIRequestError(RelayError):
    """A proxied call to the underlying HTTP API failed."""

    code = "API_REQUEST_ERROR"

    def __init__(self, message: str, status_code: int | None = None, response_data: Any | None = None):
        super().__init__(message, {"status_code": status_code, "response_data": response_data})
        self.status_code = status_code
        self.response_data = response_data


class TransportError(RelayError):
    """The HTTP listener could not be started or failed irrecoverably."""

    code = "TRANSPORT_ERROR"


class DuplicateSessionError(RelayError):
    """A session id was registered twice."""

    code = "DUPLICATE_SESSION"

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} is already registered", {"session_id": session_id})
        self.session_id = session_id


class ProtocolError(RelayError):
    """A JSON-RPC level fault that is reported back to the client.

    Attributes:
        error: The error object placed in the JSON-RPC error envelope.
        status_code: The HTTP status used when the fault ends an HTTP exchange.
    """

    code = "PROTOCOL_ERROR"

    error: ErrorData

    def __init__(self, code: int, message: str, *, status_code: int = 400, data: Any | None = None):
        super().__init__(message)
        self.error = ErrorData(code=code, message=message, data=data)
        self.status_code = status_code

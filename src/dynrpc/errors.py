"""Closed error taxonomy for dynamic invocation and the transport error classifier."""

from typing import Any, Dict, Optional

import grpc


class RpcEngineError(Exception):
    """Base class for every classified failure."""

    kind = 'rpc_engine_error'

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'message': str(self)}


class InvalidInputEncoding(RpcEngineError):
    """Request JSON is not a well-formed JSON object."""

    kind = 'invalid_input_encoding'


class TypeMismatch(RpcEngineError):
    """A value cannot be coerced to its field's declared type."""

    kind = 'type_mismatch'

    def __init__(self, field: str, detail: str = ''):
        self.field = field
        self.detail = detail
        message = f"Type mismatch for field '{field}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    def to_dict(self):
        data = super().to_dict()
        data['field'] = self.field
        return data


class MessageTypeNotFound(RpcEngineError):
    kind = 'message_type_not_found'

    def __init__(self, type_name: str):
        self.type_name = type_name
        super().__init__(f"Message type '{type_name}' not found")

    def to_dict(self):
        data = super().to_dict()
        data['type_name'] = self.type_name
        return data


class InvalidAddress(RpcEngineError):
    kind = 'invalid_address'

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Invalid server address: '{address}'")


class MalformedWireData(RpcEngineError):
    """Binary data violates protobuf wire-format framing."""

    kind = 'malformed_wire_data'


class Unavailable(RpcEngineError):
    kind = 'unavailable'

    def __init__(self, message: str = 'Server unavailable'):
        super().__init__(message)


class Timeout(RpcEngineError):
    kind = 'timeout'

    def __init__(self, message: str = 'Deadline exceeded'):
        super().__init__(message)


class RpcFailed(RpcEngineError):
    """The peer answered with a non-OK status.

    Keeps the status code, message and whatever headers/trailers were received
    so callers can render protocol-level diagnostics.
    """

    kind = 'rpc_failed'

    def __init__(self, code: grpc.StatusCode, message: str, headers=None, trailers=None, debug: Optional[str] = None):
        self.code = code
        self.status_message = message or ''
        self.headers = dict(headers or {})
        self.trailers = dict(trailers or {})
        self.debug = debug
        super().__init__(f"gRPC error: {code.name} - {self.status_message}")

    @property
    def status_code(self) -> int:
        return self.code.value[0]

    def to_dict(self):
        data = super().to_dict()
        data.update({
            'status_code': self.status_code,
            'status_name': self.code.name,
            'status_message': self.status_message,
            'headers': self.headers,
            'trailers': self.trailers,
            'debug': self.debug,
        })
        return data


class Unknown(RpcEngineError):
    """Any other failure, carrying the original diagnostic text."""

    kind = 'unknown'


class StreamingNotSupported(Unknown):
    kind = 'streaming_not_supported'

    def __init__(self, method_path: str):
        self.method_path = method_path
        super().__init__(f"Streaming method '{method_path}' cannot be executed as a unary call")


def _metadata_to_dict(metadata) -> Dict[str, Any]:
    result = {}
    for key, value in metadata or ():
        result[key] = value
    return result


def _call_detail(error, name):
    getter = getattr(error, name, None)
    if not callable(getter):
        return None
    try:
        return getter()
    except Exception:  # the rendezvous may not carry this piece
        return None


def classify(error: BaseException) -> RpcEngineError:
    """Maps a transport failure to exactly one taxonomy entry."""
    if isinstance(error, RpcEngineError):
        return error

    if isinstance(error, grpc.FutureTimeoutError):
        return Timeout()

    if isinstance(error, grpc.FutureCancelledError):
        return Unknown('Call cancelled by caller')

    code = _call_detail(error, 'code')
    if not isinstance(code, grpc.StatusCode):
        return Unknown(f"{type(error).__name__}: {error}")

    details = _call_detail(error, 'details') or ''
    if code == grpc.StatusCode.UNAVAILABLE:
        return Unavailable(details or 'Server unavailable')
    if code == grpc.StatusCode.DEADLINE_EXCEEDED:
        return Timeout(details or 'Deadline exceeded')

    return RpcFailed(
        code,
        details,
        headers=_metadata_to_dict(_call_detail(error, 'initial_metadata')),
        trailers=_metadata_to_dict(_call_detail(error, 'trailing_metadata')),
        debug=_call_detail(error, 'debug_error_string'),
    )

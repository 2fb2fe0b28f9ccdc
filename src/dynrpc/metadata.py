import json
from typing import Dict, List, Optional, Tuple, Union

from dynrpc.constants import BINARY_METADATA_SUFFIX


class GrpcMetadataError(ValueError):
    pass


class GrpcMetadata:
    """Key/value pairs sent alongside a request.

    Keys ending in ``-bin`` carry raw bytes on the wire; their values are
    given as text and sent as their UTF-8 encoding.
    """

    def __init__(self, headers: Optional[Dict[str, str]] = None):
        self.headers = dict(headers or {})

    @staticmethod
    def is_binary_key(key: str) -> bool:
        return key.endswith(BINARY_METADATA_SUFFIX)

    @classmethod
    def from_json(cls, text: str) -> 'GrpcMetadata':
        try:
            parsed = json.loads(text)
        except (ValueError, TypeError) as e:
            raise GrpcMetadataError(f"Invalid metadata JSON: {e}") from e
        if not isinstance(parsed, dict) or not all(isinstance(v, str) for v in parsed.values()):
            raise GrpcMetadataError("Metadata must be a JSON object of string values")
        return cls(parsed)

    @classmethod
    def from_pairs(cls, pairs) -> 'GrpcMetadata':
        """Accepts ``{'key': ..., 'value': ...}`` rows or ``(key, value)`` tuples; empty entries are dropped."""
        headers = {}
        for pair in pairs or ():
            if isinstance(pair, dict):
                key, value = pair.get('key'), pair.get('value')
            else:
                key, value = pair
            if key and value:
                headers[key] = value
        return cls(headers)

    def to_json(self) -> str:
        if not self.headers:
            return "{}"
        return json.dumps(self.headers, sort_keys=True, indent=2)

    def to_grpc(self) -> List[Tuple[str, Union[str, bytes]]]:
        """Pairs in the shape grpcio expects, lower-cased keys, binary values as bytes."""
        result = []
        for key, value in self.headers.items():
            key = key.lower()
            if self.is_binary_key(key):
                result.append((key, value.encode('utf-8') if isinstance(value, str) else bytes(value)))
            else:
                result.append((key, value))
        return result

    def __len__(self):
        return len(self.headers)

    def __eq__(self, other):
        if not isinstance(other, GrpcMetadata):
            return NotImplemented
        return self.headers == other.headers

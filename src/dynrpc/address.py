from typing import NamedTuple, Tuple

from dynrpc.constants import ADDRESS_PREFIXES, DEFAULT_GRPC_PORT, TLS_PORT
from dynrpc.errors import InvalidAddress


class RpcAddress(NamedTuple):
    host: str
    port: int
    use_tls: bool

    @property
    def target(self) -> str:
        return f"{self.host}:{self.port}"


def parse_address(raw: str) -> Tuple[str, int]:
    """Splits ``[http[s]://]host[:port]`` into host and port.

    A missing or unparseable port falls back to the conventional gRPC port.
    """
    address = (raw or '').strip()
    for prefix in ADDRESS_PREFIXES:
        if address.startswith(prefix):
            address = address[len(prefix):]
            break
    address = address.strip().rstrip('/')

    if not address:
        raise InvalidAddress(raw)

    host, sep, port_text = address.rpartition(':')
    # bracketed IPv6 literal without a port
    if not sep or address.endswith(']'):
        return address, DEFAULT_GRPC_PORT

    # bare IPv6 literal; a port needs the bracketed form
    if ':' in host and not host.startswith('['):
        return f"[{address}]", DEFAULT_GRPC_PORT

    if not host:
        raise InvalidAddress(raw)

    try:
        port = int(port_text)
    except ValueError:
        port = DEFAULT_GRPC_PORT
    if port <= 0:
        port = DEFAULT_GRPC_PORT
    return host, port


def decide_tls(port: int) -> bool:
    # fixed heuristic, TLS on other ports is not detected
    return port == TLS_PORT


def resolve_address(raw: str) -> RpcAddress:
    host, port = parse_address(raw)
    return RpcAddress(host, port, decide_tls(port))

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import grpc

from dynrpc.address import RpcAddress, resolve_address
from dynrpc.constants import (
    CANCEL_POLL_INTERVAL,
    DEFAULT_TIMEOUT,
    SUCCESS_STATUS_CODE,
    SUCCESS_STATUS_MESSAGE,
)
from dynrpc.DescriptorIndex import DescriptorIndex
from dynrpc.descriptors import MessageDescriptor, MethodDescriptor
from dynrpc.errors import RpcEngineError, StreamingNotSupported, classify
from dynrpc.helper import helper
from dynrpc.metadata import GrpcMetadata
from dynrpc.ProtobufConverter import ProtobufConverter
from dynrpc.WireCodec import WireCodec


@dataclass
class UnaryResponse:
    response_json: str
    elapsed_seconds: float
    status_code: int = SUCCESS_STATUS_CODE
    status_message: str = SUCCESS_STATUS_MESSAGE
    headers: Dict[str, Any] = field(default_factory=dict)
    trailers: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'response': self.response_json,
            'responseTime': self.elapsed_seconds,
            'statusCode': self.status_code,
            'statusMessage': self.status_message,
            'headers': {k: v if isinstance(v, str) else repr(v) for k, v in self.headers.items()},
            'trailers': {k: v if isinstance(v, str) else repr(v) for k, v in self.trailers.items()},
        }


class grpcunaryclient(helper):
    """Executes one unary call from JSON to JSON against descriptors in an index.

    The client keeps no per-call state. ``channel_factory`` receives the
    resolved ``RpcAddress`` and returns a grpc channel; the default opens a
    plaintext or TLS channel from the address's ``use_tls`` flag, using the
    optional ``creds`` file paths (``ca_certificate``, ``client_key``,
    ``client_certificate``) for TLS.
    """

    def __init__(self, index: DescriptorIndex, channel_factory: Optional[Callable[[RpcAddress], Any]] = None, creds=None):
        super().__init__()
        self.index = index
        self.creds = creds if isinstance(creds, dict) else {}
        self.channel_factory = channel_factory or self.connect_to_server

    def resolve_descriptor(self, type_name: str) -> MessageDescriptor:
        return self.index.resolve(type_name)

    def connect_to_server(self, address: RpcAddress):
        if not address.use_tls:
            return grpc.insecure_channel(address.target)

        root_certificates = private_key = certificate_chain = None
        if self.creds.get('ca_certificate'):
            with open(self.creds['ca_certificate'], 'rb') as f:
                root_certificates = f.read()
        if self.creds.get('client_key'):
            with open(self.creds['client_key'], 'rb') as f:
                private_key = f.read()
        if self.creds.get('client_certificate'):
            with open(self.creds['client_certificate'], 'rb') as f:
                certificate_chain = f.read()

        if (private_key is None) != (certificate_chain is None):
            raise ValueError("Both client_key and client_certificate are required for mutual TLS")

        credentials = grpc.ssl_channel_credentials(
            root_certificates=root_certificates,
            private_key=private_key,
            certificate_chain=certificate_chain
        )
        return grpc.secure_channel(address.target, credentials)

    def close_server_connection(self, channel):
        if channel is None:
            return
        try:
            channel.close()
        except Exception as e:
            self.log(function_name='close_server_connection', exception=e)

    @staticmethod
    def _grpc_metadata(metadata):
        if metadata is None:
            return []
        if isinstance(metadata, GrpcMetadata):
            return metadata.to_grpc()
        if isinstance(metadata, dict):
            return GrpcMetadata(metadata).to_grpc()
        return GrpcMetadata.from_pairs(metadata).to_grpc()

    def execute_unary(self, request_json, target: str, method: MethodDescriptor, metadata=None,
                      timeout: Optional[float] = DEFAULT_TIMEOUT, cancel_event=None) -> UnaryResponse:
        """Runs the call and returns a ``UnaryResponse``.

        Raises a single ``RpcEngineError`` subclass on failure. Descriptor,
        JSON and address problems surface before any channel is opened.
        """
        if method.is_streaming:
            raise StreamingNotSupported(method.path)

        input_descriptor = self.index.resolve(method.input_type)
        output_descriptor = self.index.resolve(method.output_type)

        if isinstance(request_json, str):
            request_json = ProtobufConverter.normalize_smart_quotes(request_json)
        request_message = ProtobufConverter.from_json(request_json, input_descriptor, self.index)
        request_bytes = WireCodec.encode(request_message)

        address = resolve_address(target)
        grpc_metadata = self._grpc_metadata(metadata)

        channel = None
        try:
            channel = self.channel_factory(address)
            rpc = channel.unary_unary(method.path, request_serializer=None, response_deserializer=None)

            start = time.perf_counter()
            call = rpc.future(request_bytes, timeout=timeout, metadata=grpc_metadata)
            response_bytes = self._wait(call, cancel_event)

            response_message = WireCodec.decode(response_bytes, output_descriptor, self.index)
            response_json = ProtobufConverter.to_json(response_message, self.index)
            elapsed = time.perf_counter() - start

            response = UnaryResponse(
                response_json=response_json,
                elapsed_seconds=elapsed,
                headers=dict(call.initial_metadata() or ()),
                trailers=dict(call.trailing_metadata() or ()),
            )
            self.log(function_name='execute_unary', args=[method.path, address.target], output=response.status_message)
            return response

        except RpcEngineError as e:
            self.log(function_name='execute_unary', args=[method.path, address.target], exception=e)
            raise
        except Exception as e:
            classified = classify(e)
            self.log(function_name='execute_unary', args=[method.path, address.target], exception=classified)
            raise classified from e
        finally:
            self.close_server_connection(channel)

    @staticmethod
    def _wait(call, cancel_event):
        if cancel_event is not None:
            while not call.done():
                if cancel_event.wait(CANCEL_POLL_INTERVAL):
                    call.cancel()
                    break
        return call.result()

from typing import Callable, Dict, List, Optional

import grpc
from grpc_reflection.v1alpha import reflection_pb2, reflection_pb2_grpc
from google.protobuf import descriptor_pb2

from dynrpc.address import RpcAddress, resolve_address
from dynrpc.DescriptorIndex import DescriptorIndex
from dynrpc.descriptors import FileDescriptor
from dynrpc.errors import RpcEngineError, classify
from dynrpc.grpcunaryclient import grpcunaryclient
from dynrpc.ProtoLoader import ProtoLoadError, from_file_descriptor_proto

REFLECTION_SERVICE_PREFIX = 'grpc.reflection.'


class grpcreflectionloader(grpcunaryclient):
    """Fills a ``DescriptorIndex`` from a server's reflection service.

    Shares channel handling with ``grpcunaryclient`` so TLS selection and
    client certificates behave the same for both.
    """

    def __init__(self, index: DescriptorIndex, target: str, channel_factory: Optional[Callable[[RpcAddress], object]] = None, creds=None, timeout: Optional[float] = None):
        super().__init__(index, channel_factory=channel_factory, creds=creds)
        self.address = resolve_address(target)
        self.timeout = timeout

    def _ask(self, stub, request) -> reflection_pb2.ServerReflectionResponse:
        responses = stub.ServerReflectionInfo(iter([request]), timeout=self.timeout)
        for response in responses:
            if response.HasField('error_response'):
                raise ProtoLoadError(
                    f"Reflection error {response.error_response.error_code}: {response.error_response.error_message}"
                )
            return response
        raise ProtoLoadError("Reflection service returned no response")

    def _with_stub(self, function_name, action, *args):
        channel = None
        try:
            channel = self.channel_factory(self.address)
            stub = reflection_pb2_grpc.ServerReflectionStub(channel)
            return action(stub, *args)
        except (RpcEngineError, ProtoLoadError) as e:
            self.log(function_name=function_name, args=[self.address.target, *args], exception=e)
            raise
        except grpc.RpcError as e:
            classified = classify(e)
            self.log(function_name=function_name, args=[self.address.target, *args], exception=classified)
            raise classified from e
        finally:
            self.close_server_connection(channel)

    def list_services(self) -> List[str]:
        """Service names advertised by the server, reflection itself excluded."""
        return self._with_stub('list_services', self._list_services)

    def _list_services(self, stub) -> List[str]:
        response = self._ask(stub, reflection_pb2.ServerReflectionRequest(list_services=""))
        return [
            service.name
            for service in response.list_services_response.service
            if not service.name.startswith(REFLECTION_SERVICE_PREFIX)
        ]

    def load_service(self, service_name: str) -> List[FileDescriptor]:
        """Fetches the file declaring ``service_name`` plus its imports and registers them."""
        return self._with_stub('load_service', self._load_service, service_name)

    def _load_service(self, stub, service_name: str) -> List[FileDescriptor]:
        fetched: Dict[str, descriptor_pb2.FileDescriptorProto] = {}

        def collect(response):
            for fd_bytes in response.file_descriptor_response.file_descriptor_proto:
                fd_proto = descriptor_pb2.FileDescriptorProto()
                fd_proto.ParseFromString(fd_bytes)
                fetched.setdefault(fd_proto.name, fd_proto)

        collect(self._ask(stub, reflection_pb2.ServerReflectionRequest(file_containing_symbol=service_name)))

        pending = [dep for fd_proto in list(fetched.values()) for dep in fd_proto.dependency]
        while pending:
            file_name = pending.pop()
            if file_name in fetched or self.index.has_file(file_name):
                continue
            collect(self._ask(stub, reflection_pb2.ServerReflectionRequest(file_by_filename=file_name)))
            if file_name not in fetched:
                raise ProtoLoadError(f"Dependency '{file_name}' not available from server reflection")
            pending.extend(fetched[file_name].dependency)

        registered = []
        for fd_proto in self._dependency_order(fetched):
            if not self.index.has_file(fd_proto.name):
                registered.append(self.index.register(from_file_descriptor_proto(fd_proto)))
        self.log(function_name='load_service', args=[service_name], output=[f.name for f in registered])
        return registered

    @staticmethod
    def _dependency_order(fetched: Dict[str, descriptor_pb2.FileDescriptorProto]) -> List[descriptor_pb2.FileDescriptorProto]:
        ordered = []
        visited = set()

        def visit(name):
            if name in visited or name not in fetched:
                return
            visited.add(name)
            for dep in fetched[name].dependency:
                visit(dep)
            ordered.append(fetched[name])

        for name in fetched:
            visit(name)
        return ordered

    def load_all(self) -> List[FileDescriptor]:
        registered = []
        for service_name in self.list_services():
            registered.extend(self.load_service(service_name))
        return registered

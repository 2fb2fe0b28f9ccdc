import os
import re
import tempfile
import importlib.resources
from pathlib import Path
from typing import Iterable, List, Optional, Union

from grpc_tools import protoc
from google.protobuf import descriptor_pb2

from dynrpc.DescriptorIndex import DescriptorIndex
from dynrpc.constants import WELL_KNOWN_PROTO_PREFIX
from dynrpc.descriptors import (
    EnumDescriptor,
    FieldDescriptor,
    FieldType,
    FileDescriptor,
    MessageDescriptor,
    MethodDescriptor,
    ServiceDescriptor,
)
from dynrpc.helper import helper

IMPORT_PATTERN = re.compile(r'import\s+(?:public\s+|weak\s+)?"(.+?)";')


class ProtoLoadError(RuntimeError):
    """Raised when a .proto file cannot be compiled or mapped."""


def _map_enum(enum_proto) -> EnumDescriptor:
    return EnumDescriptor(enum_proto.name, tuple((value.name, value.number) for value in enum_proto.value))


def _map_message(message_proto, package: str) -> MessageDescriptor:
    message = MessageDescriptor(message_proto.name, package, is_map_entry=message_proto.options.map_entry)
    for field_proto in message_proto.field:
        if field_proto.type == descriptor_pb2.FieldDescriptorProto.TYPE_GROUP:
            raise ProtoLoadError(f"Group field '{message_proto.name}.{field_proto.name}' is not supported")
        field_type = FieldType(field_proto.type)
        message.add_field(FieldDescriptor(
            name=field_proto.name,
            number=field_proto.number,
            type=field_type,
            is_repeated=field_proto.label == descriptor_pb2.FieldDescriptorProto.LABEL_REPEATED,
            type_name=field_proto.type_name if field_type in (FieldType.MESSAGE, FieldType.ENUM) else None,
            json_name=field_proto.json_name or None,
        ))
    for nested_proto in message_proto.nested_type:
        message.add_nested_message(_map_message(nested_proto, package))
    for enum_proto in message_proto.enum_type:
        message.add_nested_enum(_map_enum(enum_proto))
    return message


def from_file_descriptor_proto(file_proto: descriptor_pb2.FileDescriptorProto) -> FileDescriptor:
    """Maps a parsed ``FileDescriptorProto`` into the engine's descriptor model."""
    package = file_proto.package
    services = []
    for service_proto in file_proto.service:
        full_name = f"{package}.{service_proto.name}" if package else service_proto.name
        methods = tuple(
            MethodDescriptor(
                name=method_proto.name,
                service_full_name=full_name,
                input_type=method_proto.input_type,
                output_type=method_proto.output_type,
                client_streaming=method_proto.client_streaming,
                server_streaming=method_proto.server_streaming,
            )
            for method_proto in service_proto.method
        )
        services.append(ServiceDescriptor(service_proto.name, full_name, methods))

    return FileDescriptor(
        name=file_proto.name,
        package=package,
        messages=tuple(_map_message(message_proto, package) for message_proto in file_proto.message_type),
        enums=tuple(_map_enum(enum_proto) for enum_proto in file_proto.enum_type),
        services=tuple(services),
        dependencies=tuple(file_proto.dependency),
    )


class ProtoLoader(helper):
    """Parses .proto sources with ``grpc_tools.protoc`` and registers them in an index.

    protoc is only asked for a ``FileDescriptorSet`` (``--include_imports``),
    so no Python code is generated or imported. Files already present in the
    index under the same name are skipped, so shared imports register once.
    """

    def __init__(self, index: DescriptorIndex):
        super().__init__()
        self.index = index

    @staticmethod
    def well_known_include_path() -> str:
        return str(importlib.resources.files("grpc_tools").joinpath("_proto"))

    def extract_imports(self, proto_file) -> List[str]:
        imports = []
        with open(proto_file, "r", encoding="utf-8") as f:
            for line in f:
                match = IMPORT_PATTERN.match(line.strip())
                if match:
                    imports.append(match.group(1))
        return imports

    def find_proto_root(self, proto_file) -> str:
        """Walks up from the file until every non well-known import resolves."""
        proto_path = Path(proto_file).resolve()
        imports = [imp for imp in self.extract_imports(proto_path) if not imp.startswith(WELL_KNOWN_PROTO_PREFIX)]
        candidate = proto_path.parent
        while candidate != candidate.parent:
            if all((candidate / imp).exists() for imp in imports):
                return str(candidate)
            candidate = candidate.parent
        raise ProtoLoadError(f"Could not resolve all imports of '{proto_path.name}', supply import paths")

    def compile_descriptor_set(self, proto_file, import_paths: Optional[Iterable[str]] = None) -> descriptor_pb2.FileDescriptorSet:
        proto_file = Path(proto_file).resolve()
        if not proto_file.is_file():
            raise ProtoLoadError(f"Proto file '{proto_file}' does not exist")

        if isinstance(import_paths, (str, os.PathLike)):
            import_paths = [import_paths]
        include_paths = [str(Path(p).resolve()) for p in (import_paths or []) if p]
        if not include_paths:
            include_paths.append(self.find_proto_root(proto_file))
        if str(proto_file.parent) not in include_paths:
            include_paths.append(str(proto_file.parent))
        include_paths.append(self.well_known_include_path())

        with tempfile.TemporaryDirectory(prefix="dynrpc_") as output_dir:
            descriptor_path = os.path.join(output_dir, "descriptor_set.pb")
            result = protoc.main([
                "",
                *[f"-I{path}" for path in include_paths],
                f"--descriptor_set_out={descriptor_path}",
                "--include_imports",
                str(proto_file),
            ])
            if result != 0:
                raise ProtoLoadError(f"protoc failed for '{proto_file.name}' (exit code {result})")

            with open(descriptor_path, "rb") as f:
                descriptor_set = descriptor_pb2.FileDescriptorSet()
                descriptor_set.ParseFromString(f.read())
        return descriptor_set

    def register_descriptor_set(self, descriptor_set: Union[bytes, descriptor_pb2.FileDescriptorSet]) -> List[FileDescriptor]:
        if isinstance(descriptor_set, (bytes, bytearray)):
            parsed = descriptor_pb2.FileDescriptorSet()
            parsed.ParseFromString(bytes(descriptor_set))
            descriptor_set = parsed

        registered = []
        for file_proto in descriptor_set.file:
            if self.index.has_file(file_proto.name):
                continue
            registered.append(self.index.register(from_file_descriptor_proto(file_proto)))
        return registered

    def load_proto(self, proto_file, import_paths=None) -> List[FileDescriptor]:
        """Compiles ``proto_file`` and registers it together with its imports, dependencies first."""
        try:
            descriptor_set = self.compile_descriptor_set(proto_file, import_paths)
            registered = self.register_descriptor_set(descriptor_set)
            self.log(function_name='load_proto', args=[proto_file, import_paths], output=[f.name for f in registered])
            return registered
        except ProtoLoadError as e:
            self.log(function_name='load_proto', args=[proto_file, import_paths], exception=e)
            raise
        except ValueError as e:
            self.log(function_name='load_proto', args=[proto_file, import_paths], exception=e)
            raise ProtoLoadError(str(e)) from e

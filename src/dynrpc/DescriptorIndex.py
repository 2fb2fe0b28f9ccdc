import threading
from typing import Iterator, List, Optional, Tuple

from dynrpc.descriptors import (
    EnumDescriptor,
    FileDescriptor,
    MessageDescriptor,
    MethodDescriptor,
    ServiceDescriptor,
)
from dynrpc.errors import MessageTypeNotFound
from dynrpc.helper import helper


class DescriptorIndex(helper):
    """Registry of loaded file descriptors with heuristic type-name resolution.

    Files are only ever appended. Registration is serialised by a lock and
    publishes a new immutable snapshot; lookups read whichever snapshot is
    current without locking, so concurrent resolves never see a half-added
    file.

    Resolution order is the registration order of ``files``: when two files
    declare the same name, the one registered first wins.
    """

    def __init__(self, files=()):
        super().__init__()
        self._lock = threading.Lock()
        self._files: Tuple[FileDescriptor, ...] = ()
        for file_descriptor in files:
            self.register(file_descriptor)

    def register(self, file_descriptor: FileDescriptor) -> FileDescriptor:
        for message in file_descriptor.messages:
            message.freeze()
        with self._lock:
            self._files = self._files + (file_descriptor,)
        self.logger.debug(f"Registered '{file_descriptor.name}' (package '{file_descriptor.package}')")
        return file_descriptor

    @property
    def files(self) -> Tuple[FileDescriptor, ...]:
        return self._files

    def file_names(self) -> List[str]:
        return [file_descriptor.name for file_descriptor in self._files]

    def has_file(self, name: str) -> bool:
        return any(file_descriptor.name == name for file_descriptor in self._files)

    def __len__(self):
        return len(self._files)

    # --- message resolution ---

    def resolve(self, type_name: str) -> MessageDescriptor:
        return self.locate(type_name)[1]

    def locate(self, type_name: str) -> Tuple[FileDescriptor, MessageDescriptor, str]:
        """Returns the owning file, the descriptor and the full name it matched under."""
        name = self._normalize(type_name)
        for file_descriptor in self._files:
            found = self._match_in_file(file_descriptor, name)
            if found is None and '.' in name:
                found = self._match_in_file(file_descriptor, self._fallback_name(name))
            if found is not None:
                return (file_descriptor,) + found
        raise MessageTypeNotFound(type_name)

    def find(self, type_name: str) -> Optional[MessageDescriptor]:
        try:
            return self.resolve(type_name)
        except MessageTypeNotFound:
            return None

    @staticmethod
    def _normalize(type_name: str) -> str:
        return type_name[1:] if type_name.startswith('.') else type_name

    @staticmethod
    def _fallback_name(name: str) -> str:
        # 'example.google.protobuf.Empty' -> 'google.protobuf.Empty'
        return name.split('.', 1)[1]

    def _match_in_file(self, file_descriptor: FileDescriptor, name: str):
        for message in file_descriptor.messages:
            full_name = file_descriptor.qualify(message.name)
            if name == full_name or name == message.name:
                return message, full_name

        for message in file_descriptor.messages:
            found = self._match_nested(message, file_descriptor.qualify(message.name), name)
            if found is not None:
                return found
        return None

    def _match_nested(self, parent: MessageDescriptor, parent_full_name: str, name: str):
        for nested in parent.nested_messages.values():
            full_name = f"{parent_full_name}.{nested.name}"
            if name == full_name or name == nested.name:
                return nested, full_name
            found = self._match_nested(nested, full_name, name)
            if found is not None:
                return found
        return None

    # --- enum resolution, same search order as messages ---

    def resolve_enum(self, type_name: str) -> Optional[EnumDescriptor]:
        name = self._normalize(type_name)
        for file_descriptor in self._files:
            found = self._match_enum_in_file(file_descriptor, name)
            if found is None and '.' in name:
                found = self._match_enum_in_file(file_descriptor, self._fallback_name(name))
            if found is not None:
                return found
        return None

    def _match_enum_in_file(self, file_descriptor: FileDescriptor, name: str):
        for enum in file_descriptor.enums:
            if name == file_descriptor.qualify(enum.name) or name == enum.name:
                return enum
        for message in file_descriptor.messages:
            found = self._match_nested_enum(message, file_descriptor.qualify(message.name), name)
            if found is not None:
                return found
        return None

    def _match_nested_enum(self, parent: MessageDescriptor, parent_full_name: str, name: str):
        for enum in parent.nested_enums.values():
            if name == f"{parent_full_name}.{enum.name}" or name == enum.name:
                return enum
        for nested in parent.nested_messages.values():
            found = self._match_nested_enum(nested, f"{parent_full_name}.{nested.name}", name)
            if found is not None:
                return found
        return None

    # --- services ---

    def services(self) -> Iterator[ServiceDescriptor]:
        for file_descriptor in self._files:
            yield from file_descriptor.services

    def find_service(self, service_name: str) -> Optional[ServiceDescriptor]:
        name = self._normalize(service_name)
        for service in self.services():
            if service.full_name == name or service.name == name:
                return service
        return None

    def find_method(self, service_name: str, method_name: str) -> Optional[MethodDescriptor]:
        service = self.find_service(service_name)
        if service is None:
            return None
        return service.method(method_name)

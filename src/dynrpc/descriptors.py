"""In-memory descriptors for protobuf files, messages, fields, enums and services.

These are deliberately independent of any parser: ``ProtoLoader`` maps
``FileDescriptorProto`` objects into them, tests build them by hand.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class FieldType(Enum):
    """Declared field types. Values follow ``FieldDescriptorProto.Type``."""

    DOUBLE = 1
    FLOAT = 2
    INT64 = 3
    UINT64 = 4
    INT32 = 5
    FIXED64 = 6
    FIXED32 = 7
    BOOL = 8
    STRING = 9
    MESSAGE = 11
    BYTES = 12
    UINT32 = 13
    ENUM = 14
    SFIXED32 = 15
    SFIXED64 = 16
    SINT32 = 17
    SINT64 = 18

    @property
    def label(self) -> str:
        return self.name.lower()


INT32_TYPES = frozenset({FieldType.INT32, FieldType.SINT32, FieldType.SFIXED32})
UINT32_TYPES = frozenset({FieldType.UINT32, FieldType.FIXED32})
INT64_TYPES = frozenset({FieldType.INT64, FieldType.SINT64, FieldType.SFIXED64})
UINT64_TYPES = frozenset({FieldType.UINT64, FieldType.FIXED64})
INTEGER_TYPES = INT32_TYPES | UINT32_TYPES | INT64_TYPES | UINT64_TYPES
SIXTY_FOUR_BIT_TYPES = INT64_TYPES | UINT64_TYPES
FLOAT_TYPES = frozenset({FieldType.DOUBLE, FieldType.FLOAT})
# types that may be packed into a single length-delimited record
PACKABLE_TYPES = INTEGER_TYPES | FLOAT_TYPES | {FieldType.BOOL, FieldType.ENUM}

INTEGER_RANGES = {
    FieldType.INT32: (-(1 << 31), (1 << 31) - 1),
    FieldType.SINT32: (-(1 << 31), (1 << 31) - 1),
    FieldType.SFIXED32: (-(1 << 31), (1 << 31) - 1),
    FieldType.UINT32: (0, (1 << 32) - 1),
    FieldType.FIXED32: (0, (1 << 32) - 1),
    FieldType.INT64: (-(1 << 63), (1 << 63) - 1),
    FieldType.SINT64: (-(1 << 63), (1 << 63) - 1),
    FieldType.SFIXED64: (-(1 << 63), (1 << 63) - 1),
    FieldType.UINT64: (0, (1 << 64) - 1),
    FieldType.FIXED64: (0, (1 << 64) - 1),
    FieldType.ENUM: (-(1 << 31), (1 << 31) - 1),
}


def _camel_case(name: str) -> str:
    parts = name.split('_')
    return parts[0] + ''.join(part[:1].upper() + part[1:] for part in parts[1:])


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    number: int
    type: FieldType
    is_repeated: bool = False
    type_name: Optional[str] = None
    json_name: Optional[str] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Field name must not be empty")
        if self.number <= 0 or self.number > (1 << 29) - 1:
            raise ValueError(f"Field '{self.name}' has invalid number {self.number}")
        if self.type in (FieldType.MESSAGE, FieldType.ENUM):
            if not self.type_name:
                raise ValueError(f"Field '{self.name}' of type {self.type.label} needs a type name")
        elif self.type_name:
            raise ValueError(f"Field '{self.name}' of type {self.type.label} cannot reference '{self.type_name}'")
        if self.json_name is None:
            object.__setattr__(self, 'json_name', _camel_case(self.name))

    @property
    def is_message(self) -> bool:
        return self.type == FieldType.MESSAGE

    @property
    def is_enum(self) -> bool:
        return self.type == FieldType.ENUM

    @property
    def is_packable(self) -> bool:
        return self.is_repeated and self.type in PACKABLE_TYPES


@dataclass(frozen=True)
class EnumDescriptor:
    name: str
    values: Tuple[Tuple[str, int], ...] = ()

    def number_of(self, value_name: str) -> Optional[int]:
        for name, number in self.values:
            if name == value_name:
                return number
        return None

    def name_of(self, number: int) -> Optional[str]:
        for name, value in self.values:
            if value == number:
                return name
        return None

    @property
    def default_name(self) -> Optional[str]:
        return self.values[0][0] if self.values else None


class MessageDescriptor:
    """Field layout of one message type.

    Fields are appended in declaration order while the owning file is being
    built. Once ``freeze()`` runs (the index does this on registration) the
    descriptor rejects further changes.
    """

    def __init__(self, name: str, parent_package: str = '', is_map_entry: bool = False):
        if not name:
            raise ValueError("Message name must not be empty")
        self.name = name
        self.parent_package = parent_package
        self.is_map_entry = is_map_entry
        self._fields: List[FieldDescriptor] = []
        self._by_name: Dict[str, FieldDescriptor] = {}
        self._by_json_name: Dict[str, FieldDescriptor] = {}
        self._by_number: Dict[int, FieldDescriptor] = {}
        self.nested_messages: Dict[str, 'MessageDescriptor'] = {}
        self.nested_enums: Dict[str, EnumDescriptor] = {}
        self._frozen = False

    def _check_mutable(self):
        if self._frozen:
            raise ValueError(f"Message descriptor '{self.name}' is frozen")

    def add_field(self, field_descriptor: FieldDescriptor) -> 'MessageDescriptor':
        self._check_mutable()
        if field_descriptor.name in self._by_name:
            raise ValueError(f"Duplicate field name '{field_descriptor.name}' in '{self.name}'")
        if field_descriptor.number in self._by_number:
            raise ValueError(f"Duplicate field number {field_descriptor.number} in '{self.name}'")
        self._fields.append(field_descriptor)
        self._by_name[field_descriptor.name] = field_descriptor
        self._by_json_name.setdefault(field_descriptor.json_name, field_descriptor)
        self._by_number[field_descriptor.number] = field_descriptor
        return self

    def add_nested_message(self, message: 'MessageDescriptor') -> 'MessageDescriptor':
        self._check_mutable()
        self.nested_messages[message.name] = message
        return self

    def add_nested_enum(self, enum: EnumDescriptor) -> 'MessageDescriptor':
        self._check_mutable()
        self.nested_enums[enum.name] = enum
        return self

    def freeze(self):
        self._frozen = True
        for nested in self.nested_messages.values():
            nested.freeze()

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def fields(self) -> Tuple[FieldDescriptor, ...]:
        return tuple(self._fields)

    @property
    def full_name(self) -> str:
        """Package-qualified top-level name; nested names are built by the index."""
        return f"{self.parent_package}.{self.name}" if self.parent_package else self.name

    def field_by_name(self, name: str) -> Optional[FieldDescriptor]:
        return self._by_name.get(name)

    def field_by_json_name(self, name: str) -> Optional[FieldDescriptor]:
        return self._by_json_name.get(name)

    def field_by_number(self, number: int) -> Optional[FieldDescriptor]:
        return self._by_number.get(number)

    def __repr__(self):
        return f"MessageDescriptor({self.full_name!r}, fields={[f.name for f in self._fields]})"


@dataclass(frozen=True)
class MethodDescriptor:
    name: str
    service_full_name: str
    input_type: str
    output_type: str
    client_streaming: bool = False
    server_streaming: bool = False

    @property
    def is_streaming(self) -> bool:
        return self.client_streaming or self.server_streaming

    @property
    def path(self) -> str:
        return f"/{self.service_full_name}/{self.name}"


@dataclass(frozen=True)
class ServiceDescriptor:
    name: str
    full_name: str
    methods: Tuple[MethodDescriptor, ...] = ()

    def method(self, name: str) -> Optional[MethodDescriptor]:
        for method in self.methods:
            if method.name == name:
                return method
        return None


@dataclass(frozen=True)
class FileDescriptor:
    name: str
    package: str = ''
    messages: Tuple[MessageDescriptor, ...] = ()
    enums: Tuple[EnumDescriptor, ...] = ()
    services: Tuple[ServiceDescriptor, ...] = ()
    dependencies: Tuple[str, ...] = field(default=())

    def qualify(self, name: str) -> str:
        return f"{self.package}.{name}" if self.package else name

import math
import struct
from typing import Any, Dict, List

from dynrpc.descriptors import (
    FLOAT_TYPES,
    INTEGER_RANGES,
    INTEGER_TYPES,
    FieldDescriptor,
    FieldType,
    MessageDescriptor,
)
from dynrpc.errors import TypeMismatch


def default_value(field: FieldDescriptor) -> Any:
    """Zero value for a field as seen by ``DynamicMessage.get``."""
    if field.is_repeated:
        return []
    if field.type in INTEGER_TYPES or field.type == FieldType.ENUM:
        return 0
    if field.type in FLOAT_TYPES:
        return 0.0
    if field.type == FieldType.BOOL:
        return False
    if field.type == FieldType.STRING:
        return ''
    if field.type == FieldType.BYTES:
        return b''
    return None


def check_value(field: FieldDescriptor, value: Any) -> Any:
    """Validates a single (non-list) value against the field's declared type.

    Returns the value in its canonical Python form (ints for every integer and
    enum type, floats for double/float). Raises ``TypeMismatch`` otherwise.
    """
    field_type = field.type

    if field_type in INTEGER_TYPES or field_type == FieldType.ENUM:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeMismatch(field.name, f"expected {field_type.label}, got {type(value).__name__}")
        low, high = INTEGER_RANGES[field_type]
        if not low <= value <= high:
            raise TypeMismatch(field.name, f"{value} is out of range for {field_type.label}")
        return value

    if field_type in FLOAT_TYPES:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeMismatch(field.name, f"expected {field_type.label}, got {type(value).__name__}")
        value = float(value)
        if field_type == FieldType.FLOAT and math.isfinite(value):
            # store what the wire can carry
            try:
                packed = struct.pack('<f', value)
            except OverflowError as e:
                raise TypeMismatch(field.name, f"{value} is out of range for float") from e
            value = struct.unpack('<f', packed)[0]
        return value

    if field_type == FieldType.BOOL:
        if not isinstance(value, bool):
            raise TypeMismatch(field.name, f"expected bool, got {type(value).__name__}")
        return value

    if field_type == FieldType.STRING:
        if not isinstance(value, str):
            raise TypeMismatch(field.name, f"expected string, got {type(value).__name__}")
        return value

    if field_type == FieldType.BYTES:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeMismatch(field.name, f"expected bytes, got {type(value).__name__}")
        return bytes(value)

    if field_type == FieldType.MESSAGE:
        if not isinstance(value, DynamicMessage):
            raise TypeMismatch(field.name, f"expected message '{field.type_name}', got {type(value).__name__}")
        return value

    raise TypeMismatch(field.name, f"unsupported field type {field_type}")


class DynamicMessage:
    """Message instance whose layout comes from a ``MessageDescriptor``.

    Values live in typed slots keyed by field name. Every setter validates the
    value against the declared type, so a message never holds a value its
    descriptor cannot encode. Unset fields read as their zero value.
    """

    def __init__(self, descriptor: MessageDescriptor):
        self.descriptor = descriptor
        self._values: Dict[str, Any] = {}

    def _field(self, name: str) -> FieldDescriptor:
        field = self.descriptor.field_by_name(name)
        if field is None:
            raise KeyError(f"'{self.descriptor.name}' has no field '{name}'")
        return field

    def get(self, name: str) -> Any:
        field = self._field(name)
        if name in self._values:
            value = self._values[name]
            return list(value) if field.is_repeated else value
        return default_value(field)

    def set(self, name: str, value: Any) -> 'DynamicMessage':
        field = self._field(name)
        if field.is_repeated:
            if not isinstance(value, (list, tuple)):
                raise TypeMismatch(name, f"expected a list for repeated field, got {type(value).__name__}")
            self._values[name] = [check_value(field, item) for item in value]
        else:
            self._values[name] = check_value(field, value)
        return self

    def append(self, name: str, value: Any) -> 'DynamicMessage':
        field = self._field(name)
        if not field.is_repeated:
            raise TypeMismatch(name, "cannot append to a singular field")
        self._values.setdefault(name, []).append(check_value(field, value))
        return self

    def has(self, name: str) -> bool:
        self._field(name)
        return name in self._values

    def clear(self, name: str):
        self._field(name)
        self._values.pop(name, None)

    def fields_set(self) -> List[FieldDescriptor]:
        """Set fields in declaration order."""
        return [field for field in self.descriptor.fields if field.name in self._values]

    def merge_from(self, other: 'DynamicMessage'):
        """Protobuf merge: repeated fields concatenate, messages merge, scalars overwrite."""
        if other.descriptor is not self.descriptor:
            raise TypeMismatch(self.descriptor.name, f"cannot merge '{other.descriptor.name}'")
        for field in other.fields_set():
            value = other._values[field.name]
            if field.is_repeated:
                self._values.setdefault(field.name, []).extend(value)
            elif field.is_message and field.name in self._values:
                self._values[field.name].merge_from(value)
            else:
                self._values[field.name] = value

    def to_python(self) -> Dict[str, Any]:
        result = {}
        for field in self.fields_set():
            value = self._values[field.name]
            if field.is_message:
                value = [item.to_python() for item in value] if field.is_repeated else value.to_python()
            elif field.is_repeated:
                value = list(value)
            result[field.name] = value
        return result

    def __eq__(self, other):
        if not isinstance(other, DynamicMessage):
            return NotImplemented
        return self.descriptor.full_name == other.descriptor.full_name and self._values == other._values

    def __repr__(self):
        return f"DynamicMessage({self.descriptor.name!r}, {self.to_python()!r})"

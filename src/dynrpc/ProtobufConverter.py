import base64
import binascii
import json
import math
import re
import struct
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Tuple, Union

from dynrpc.descriptors import (
    FLOAT_TYPES,
    INTEGER_TYPES,
    SIXTY_FOUR_BIT_TYPES,
    FieldDescriptor,
    FieldType,
    MessageDescriptor,
)
from dynrpc.DynamicMessage import DynamicMessage, check_value
from dynrpc.errors import InvalidInputEncoding, TypeMismatch

SMART_PUNCTUATION = {
    '“': '"',
    '”': '"',
    '‘': "'",
    '’': "'",
    '—': '-',
    '–': '-',
}

NON_FINITE_NAMES = {'NaN': math.nan, 'Infinity': math.inf, '-Infinity': -math.inf}

TIMESTAMP_PATTERN = re.compile(
    r'^(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?(?:[Zz]|([+-])(\d{2}):(\d{2}))$'
)
DURATION_PATTERN = re.compile(r'^(-)?(\d+)(?:\.(\d{1,9}))?s$')
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
# 0001-01-01T00:00:00Z .. 9999-12-31T23:59:59Z
TIMESTAMP_MIN_SECONDS = -62135596800
TIMESTAMP_MAX_SECONDS = 253402300799
DURATION_MAX_SECONDS = 315576000000
MAX_NANOS = 999999999


def _float32_repr(value: float) -> float:
    """Shortest decimal that still maps to the same 32-bit float."""
    packed = struct.pack('<f', value)
    for precision in range(6, 10):
        candidate = float(format(value, f'.{precision}g'))
        if struct.pack('<f', candidate) == packed:
            return candidate
    return value


def _nanos_from_fraction(fraction) -> int:
    return int(fraction.ljust(9, '0')) if fraction else 0


def _fraction_from_nanos(nanos: int) -> str:
    """0, 3, 6 or 9 fractional digits, as protobuf prints them."""
    if nanos == 0:
        return ''
    if nanos % 1000000 == 0:
        return f'.{nanos // 1000000:03d}'
    if nanos % 1000 == 0:
        return f'.{nanos // 1000:06d}'
    return f'.{nanos:09d}'


def parse_timestamp(text: str) -> Tuple[int, int]:
    """RFC 3339 text to ``(seconds, nanos)`` since the Unix epoch."""
    match = TIMESTAMP_PATTERN.match(text.strip())
    if match is None:
        raise ValueError(f"'{text}' is not an RFC 3339 timestamp")
    year, month, day, hour, minute, second = (int(part) for part in match.group(1, 2, 3, 4, 5, 6))
    moment = datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    delta = moment - EPOCH
    seconds = delta.days * 86400 + delta.seconds
    if match.group(8):
        offset = int(match.group(9)) * 3600 + int(match.group(10)) * 60
        seconds += -offset if match.group(8) == '+' else offset
    if not TIMESTAMP_MIN_SECONDS <= seconds <= TIMESTAMP_MAX_SECONDS:
        raise ValueError(f"'{text}' is outside the timestamp range")
    return seconds, _nanos_from_fraction(match.group(7))


def format_timestamp(seconds: int, nanos: int) -> str:
    moment = EPOCH + timedelta(seconds=seconds)
    return (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}T"
        f"{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}{_fraction_from_nanos(nanos)}Z"
    )


def valid_timestamp(seconds: int, nanos: int) -> bool:
    return TIMESTAMP_MIN_SECONDS <= seconds <= TIMESTAMP_MAX_SECONDS and 0 <= nanos <= MAX_NANOS


def parse_duration(text: str) -> Tuple[int, int]:
    """``"1.5s"`` style text to ``(seconds, nanos)``; both carry the sign."""
    match = DURATION_PATTERN.match(text.strip())
    if match is None:
        raise ValueError(f"'{text}' is not a duration such as '1.5s'")
    seconds = int(match.group(2))
    nanos = _nanos_from_fraction(match.group(3))
    if seconds > DURATION_MAX_SECONDS:
        raise ValueError(f"'{text}' is outside the duration range")
    if match.group(1):
        return -seconds, -nanos
    return seconds, nanos


def format_duration(seconds: int, nanos: int) -> str:
    sign = '-' if seconds < 0 or nanos < 0 else ''
    return f"{sign}{abs(seconds)}{_fraction_from_nanos(abs(nanos))}s"


def valid_duration(seconds: int, nanos: int) -> bool:
    if abs(seconds) > DURATION_MAX_SECONDS or abs(nanos) > MAX_NANOS:
        return False
    return not (seconds > 0 and nanos < 0 or seconds < 0 and nanos > 0)


class ProtobufConverter:
    """JSON <-> ``DynamicMessage`` conversion following the protobuf JSON mapping.

    ``resolver`` is anything with ``resolve(type_name)`` and
    ``resolve_enum(type_name)``, in practice a ``DescriptorIndex``.

    Wrapper types read and render as their bare value; ``Timestamp`` and
    ``Duration`` as RFC 3339 and ``"1.5s"`` strings. Their object forms are
    still accepted on input.
    """

    WRAPPER_TYPES = frozenset({
        'google.protobuf.DoubleValue',
        'google.protobuf.FloatValue',
        'google.protobuf.Int64Value',
        'google.protobuf.UInt64Value',
        'google.protobuf.Int32Value',
        'google.protobuf.UInt32Value',
        'google.protobuf.BoolValue',
        'google.protobuf.StringValue',
        'google.protobuf.BytesValue',
    })

    # full name -> (parse, format, valid)
    CUSTOM_CONVERTERS = {
        'google.protobuf.Timestamp': (parse_timestamp, format_timestamp, valid_timestamp),
        'google.protobuf.Duration': (parse_duration, format_duration, valid_duration),
    }

    @classmethod
    def normalize_smart_quotes(cls, text: str) -> str:
        """Replaces typographic quotes and dashes some editors insert."""
        for fancy, plain in SMART_PUNCTUATION.items():
            text = text.replace(fancy, plain)
        return text

    @classmethod
    def from_json(cls, json_data: Union[str, bytes, Dict[str, Any]], descriptor: MessageDescriptor, resolver) -> DynamicMessage:
        if isinstance(json_data, (str, bytes, bytearray)):
            try:
                json_data = json.loads(json_data)
            except (ValueError, TypeError) as e:
                raise InvalidInputEncoding(f"Invalid JSON: {e}") from e

        if not isinstance(json_data, dict):
            raise InvalidInputEncoding(f"Expected a JSON object, got {type(json_data).__name__}")

        return cls.from_dict(json_data, descriptor, resolver)

    @classmethod
    def from_dict(cls, input_data: Dict[str, Any], descriptor: MessageDescriptor, resolver) -> DynamicMessage:
        msg = DynamicMessage(descriptor)

        for input_name, value in input_data.items():
            field = descriptor.field_by_name(input_name) or descriptor.field_by_json_name(input_name)
            # unknown keys are ignored
            if field is None or value is None:
                continue

            if field.is_repeated and field.is_message and cls._map_entry(field, resolver) is not None:
                msg.set(field.name, cls._map_entries(field, value, resolver))
            elif field.is_repeated:
                if not isinstance(value, list):
                    raise TypeMismatch(field.name, f"expected an array, got {type(value).__name__}")
                msg.set(field.name, [cls._convert_single_value(item, field, resolver) for item in value])
            else:
                msg.set(field.name, cls._convert_single_value(value, field, resolver))

        return msg

    @classmethod
    def _map_entry(cls, field: FieldDescriptor, resolver):
        entry = resolver.resolve(field.type_name)
        return entry if entry.is_map_entry else None

    @classmethod
    def _map_entries(cls, field: FieldDescriptor, value: Any, resolver):
        if not isinstance(value, dict):
            raise TypeMismatch(field.name, f"expected an object for map field, got {type(value).__name__}")
        entry_descriptor = cls._map_entry(field, resolver)
        key_field = entry_descriptor.field_by_name('key')
        value_field = entry_descriptor.field_by_name('value')

        entries = []
        for raw_key, raw_value in value.items():
            entry = DynamicMessage(entry_descriptor)
            entry.set('key', cls._convert_map_key(raw_key, key_field, field))
            if raw_value is not None:
                entry.set('value', cls._convert_single_value(raw_value, value_field, resolver))
            entries.append(entry)
        return entries

    @classmethod
    def _convert_map_key(cls, key: str, key_field: FieldDescriptor, map_field: FieldDescriptor):
        if key_field.type == FieldType.BOOL:
            if key in ('true', 'false'):
                return key == 'true'
            raise TypeMismatch(map_field.name, f"invalid bool map key '{key}'")
        if key_field.type in INTEGER_TYPES:
            try:
                return check_value(key_field, int(key))
            except (ValueError, TypeMismatch) as e:
                raise TypeMismatch(map_field.name, f"invalid {key_field.type.label} map key '{key}'") from e
        return check_value(key_field, key)

    @classmethod
    def _convert_single_value(cls, value: Any, field: FieldDescriptor, resolver) -> Any:
        """Convert a single JSON value to the field's canonical Python value."""
        if value is None:
            raise TypeMismatch(field.name, "null is not allowed inside a repeated or map field")

        field_type = field.type

        if field_type == FieldType.MESSAGE:
            descriptor = resolver.resolve(field.type_name)
            if isinstance(value, dict):
                return cls.from_dict(value, descriptor, resolver)
            return cls._convert_well_known(value, field, descriptor, resolver)

        if field_type == FieldType.ENUM:
            return cls._convert_enum(value, field, resolver)

        if field_type in INTEGER_TYPES:
            return check_value(field, cls._to_integer(value, field))

        if field_type in FLOAT_TYPES:
            if isinstance(value, str):
                if value in NON_FINITE_NAMES:
                    value = NON_FINITE_NAMES[value]
                else:
                    try:
                        value = float(value)
                    except ValueError as e:
                        raise TypeMismatch(field.name, f"'{value}' is not a number") from e
            return check_value(field, value)

        if field_type == FieldType.BYTES:
            if not isinstance(value, str):
                raise TypeMismatch(field.name, f"expected a base64 string, got {type(value).__name__}")
            return cls._decode_base64(value, field)

        return check_value(field, value)

    @classmethod
    def _convert_well_known(cls, value: Any, field: FieldDescriptor, descriptor: MessageDescriptor, resolver) -> DynamicMessage:
        full_name = descriptor.full_name
        msg = DynamicMessage(descriptor)

        if full_name in cls.WRAPPER_TYPES:
            try:
                return msg.set('value', cls._convert_single_value(value, descriptor.field_by_name('value'), resolver))
            except TypeMismatch as e:
                raise TypeMismatch(field.name, e.detail) from e

        if full_name in cls.CUSTOM_CONVERTERS and isinstance(value, str):
            parse = cls.CUSTOM_CONVERTERS[full_name][0]
            try:
                seconds, nanos = parse(value)
            except ValueError as e:
                raise TypeMismatch(field.name, str(e)) from e
            if seconds:
                msg.set('seconds', seconds)
            if nanos:
                msg.set('nanos', nanos)
            return msg

        raise TypeMismatch(field.name, f"expected an object, got {type(value).__name__}")

    @classmethod
    def _to_integer(cls, value: Any, field: FieldDescriptor) -> int:
        if isinstance(value, bool):
            raise TypeMismatch(field.name, f"expected {field.type.label}, got bool")
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            if value.is_integer():
                return int(value)
            raise TypeMismatch(field.name, f"{value} is not an integer")
        if isinstance(value, str):
            text = value.strip()
            try:
                return int(text)
            except ValueError:
                pass
            try:
                number = float(text)
            except ValueError as e:
                raise TypeMismatch(field.name, f"'{value}' is not an integer") from e
            if number.is_integer():
                return int(number)
            raise TypeMismatch(field.name, f"'{value}' is not an integer")
        raise TypeMismatch(field.name, f"expected {field.type.label}, got {type(value).__name__}")

    @classmethod
    def _convert_enum(cls, value: Any, field: FieldDescriptor, resolver) -> int:
        if isinstance(value, str):
            enum = resolver.resolve_enum(field.type_name)
            number = enum.number_of(value) if enum is not None else None
            if number is not None:
                return number
            try:
                number = int(value.strip())
            except ValueError as e:
                raise TypeMismatch(field.name, f"unknown value '{value}' for enum '{field.type_name}'") from e
            return check_value(field, number)
        return check_value(field, cls._to_integer(value, field))

    @classmethod
    def _decode_base64(cls, value: str, field: FieldDescriptor) -> bytes:
        text = value.strip().replace('-', '+').replace('_', '/')
        text += '=' * (-len(text) % 4)
        try:
            return base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise TypeMismatch(field.name, f"invalid base64: {e}") from e

    @classmethod
    def to_dict(cls, msg: DynamicMessage, resolver) -> Dict[str, Any]:
        """Convert a dynamic message to a JSON-ready dictionary (set fields only)."""
        result = {}
        for field in msg.fields_set():
            value = msg.get(field.name)
            if field.is_repeated and field.is_message and cls._map_entry(field, resolver) is not None:
                result[field.name] = cls._render_map(value, resolver)
            elif field.is_repeated:
                result[field.name] = [cls._render_value(item, field, resolver) for item in value]
            else:
                result[field.name] = cls._render_value(value, field, resolver)
        return result

    @classmethod
    def _render_map(cls, entries, resolver) -> Dict[str, Any]:
        rendered = {}
        for entry in entries:
            key_field = entry.descriptor.field_by_name('key')
            value_field = entry.descriptor.field_by_name('value')
            key = entry.get('key')
            if isinstance(key, bool):
                key = 'true' if key else 'false'
            value = entry.get('value')
            if value_field.is_message and not entry.has('value'):
                rendered[str(key)] = {}
            else:
                rendered[str(key)] = cls._render_value(value, value_field, resolver)
        return rendered

    @classmethod
    def _render_value(cls, value: Any, field: FieldDescriptor, resolver) -> Any:
        field_type = field.type
        if field_type == FieldType.MESSAGE:
            return cls._render_message(value, resolver)
        if field_type == FieldType.ENUM:
            enum = resolver.resolve_enum(field.type_name)
            name = enum.name_of(value) if enum is not None else None
            return name if name is not None else value
        if field_type in SIXTY_FOUR_BIT_TYPES:
            return str(value)
        if field_type in FLOAT_TYPES:
            if math.isnan(value):
                return 'NaN'
            if math.isinf(value):
                return 'Infinity' if value > 0 else '-Infinity'
            return _float32_repr(value) if field_type == FieldType.FLOAT else value
        if field_type == FieldType.BYTES:
            return base64.b64encode(value).decode('ascii')
        return value

    @classmethod
    def _render_message(cls, msg: DynamicMessage, resolver) -> Any:
        full_name = msg.descriptor.full_name
        if full_name in cls.WRAPPER_TYPES:
            return cls._render_value(msg.get('value'), msg.descriptor.field_by_name('value'), resolver)
        if full_name in cls.CUSTOM_CONVERTERS:
            _, render, valid = cls.CUSTOM_CONVERTERS[full_name]
            seconds, nanos = msg.get('seconds'), msg.get('nanos')
            # out-of-range values fall through to the object form
            if valid(seconds, nanos):
                return render(seconds, nanos)
        return cls.to_dict(msg, resolver)

    @classmethod
    def to_json(cls, msg: DynamicMessage, resolver) -> str:
        """Convert a dynamic message to a JSON string. An empty message gives '{}'."""
        return json.dumps(cls.to_dict(msg, resolver), indent=2)

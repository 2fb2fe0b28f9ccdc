"""Protobuf binary wire format for ``DynamicMessage``."""

import struct
from typing import Any, Tuple

from dynrpc.descriptors import FieldDescriptor, FieldType, MessageDescriptor
from dynrpc.DynamicMessage import DynamicMessage
from dynrpc.errors import MalformedWireData

WIRETYPE_VARINT = 0
WIRETYPE_FIXED64 = 1
WIRETYPE_LENGTH_DELIMITED = 2
WIRETYPE_START_GROUP = 3
WIRETYPE_END_GROUP = 4
WIRETYPE_FIXED32 = 5

MAX_VARINT_BYTES = 10
MAX_RECURSION_DEPTH = 100
UINT64_MASK = (1 << 64) - 1
UINT32_MASK = (1 << 32) - 1

WIRE_TYPES = {
    FieldType.INT32: WIRETYPE_VARINT,
    FieldType.INT64: WIRETYPE_VARINT,
    FieldType.UINT32: WIRETYPE_VARINT,
    FieldType.UINT64: WIRETYPE_VARINT,
    FieldType.SINT32: WIRETYPE_VARINT,
    FieldType.SINT64: WIRETYPE_VARINT,
    FieldType.BOOL: WIRETYPE_VARINT,
    FieldType.ENUM: WIRETYPE_VARINT,
    FieldType.FIXED64: WIRETYPE_FIXED64,
    FieldType.SFIXED64: WIRETYPE_FIXED64,
    FieldType.DOUBLE: WIRETYPE_FIXED64,
    FieldType.FIXED32: WIRETYPE_FIXED32,
    FieldType.SFIXED32: WIRETYPE_FIXED32,
    FieldType.FLOAT: WIRETYPE_FIXED32,
    FieldType.STRING: WIRETYPE_LENGTH_DELIMITED,
    FieldType.BYTES: WIRETYPE_LENGTH_DELIMITED,
    FieldType.MESSAGE: WIRETYPE_LENGTH_DELIMITED,
}

STRUCT_FORMATS = {
    FieldType.FIXED64: '<Q',
    FieldType.SFIXED64: '<q',
    FieldType.DOUBLE: '<d',
    FieldType.FIXED32: '<I',
    FieldType.SFIXED32: '<i',
    FieldType.FLOAT: '<f',
}


def encode_varint(value: int) -> bytes:
    value &= UINT64_MASK
    out = bytearray()
    while True:
        bits = value & 0x7F
        value >>= 7
        if value:
            out.append(bits | 0x80)
        else:
            out.append(bits)
            return bytes(out)


def decode_varint(data: bytes, pos: int) -> Tuple[int, int]:
    result = 0
    shift = 0
    for _ in range(MAX_VARINT_BYTES):
        if pos >= len(data):
            raise MalformedWireData(f"Truncated varint at offset {pos}")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & UINT64_MASK, pos
        shift += 7
    raise MalformedWireData(f"Varint longer than {MAX_VARINT_BYTES} bytes at offset {pos}")


def zigzag_encode(value: int, bits: int) -> int:
    return ((value << 1) ^ (value >> (bits - 1))) & ((1 << bits) - 1)


def zigzag_decode(value: int) -> int:
    return (value >> 1) ^ -(value & 1)


def _to_signed(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    if value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def make_tag(number: int, wire_type: int) -> bytes:
    return encode_varint((number << 3) | wire_type)


class WireCodec:
    """Tag/length/value encoding of dynamic messages.

    Encoding only needs the message itself. Decoding needs a resolver with a
    ``resolve(type_name)`` method (normally a ``DescriptorIndex``) to find the
    layout of nested message fields.
    """

    @classmethod
    def encode(cls, message: DynamicMessage) -> bytes:
        out = bytearray()
        for field in message.fields_set():
            value = message.get(field.name)
            if field.is_repeated:
                if not value:
                    continue
                if field.is_packable:
                    payload = b''.join(cls._encode_scalar(field, item) for item in value)
                    out += make_tag(field.number, WIRETYPE_LENGTH_DELIMITED)
                    out += encode_varint(len(payload))
                    out += payload
                else:
                    for item in value:
                        out += cls._encode_field(field, item)
            else:
                out += cls._encode_field(field, value)
        return bytes(out)

    @classmethod
    def _encode_field(cls, field: FieldDescriptor, value: Any) -> bytes:
        return make_tag(field.number, WIRE_TYPES[field.type]) + cls._encode_scalar(field, value)

    @classmethod
    def _encode_scalar(cls, field: FieldDescriptor, value: Any) -> bytes:
        field_type = field.type
        if field_type in STRUCT_FORMATS:
            return struct.pack(STRUCT_FORMATS[field_type], value)
        if field_type == FieldType.SINT32:
            return encode_varint(zigzag_encode(value, 32))
        if field_type == FieldType.SINT64:
            return encode_varint(zigzag_encode(value, 64))
        if field_type == FieldType.BOOL:
            return b'\x01' if value else b'\x00'
        if WIRE_TYPES[field_type] == WIRETYPE_VARINT:
            return encode_varint(value)
        if field_type == FieldType.STRING:
            payload = value.encode('utf-8')
        elif field_type == FieldType.BYTES:
            payload = value
        else:
            payload = cls.encode(value)
        return encode_varint(len(payload)) + payload

    @classmethod
    def decode(cls, data: bytes, descriptor: MessageDescriptor, resolver, depth: int = 0) -> DynamicMessage:
        if depth > MAX_RECURSION_DEPTH:
            raise MalformedWireData(f"Message nesting exceeds {MAX_RECURSION_DEPTH} levels")
        data = bytes(data)
        message = DynamicMessage(descriptor)
        pos = 0
        end = len(data)
        while pos < end:
            tag, pos = decode_varint(data, pos)
            number, wire_type = tag >> 3, tag & 0x7
            if number == 0:
                raise MalformedWireData(f"Field number 0 at offset {pos}")
            if wire_type > WIRETYPE_FIXED32:
                raise MalformedWireData(f"Invalid wire type {wire_type} for field {number}")

            field = descriptor.field_by_number(number)
            if field is None:
                pos = cls._skip(data, pos, number, wire_type, depth)
                continue

            if field.is_packable and wire_type == WIRETYPE_LENGTH_DELIMITED:
                payload, pos = cls._read_length_delimited(data, pos)
                cls._decode_packed(payload, field, message)
                continue

            expected = WIRE_TYPES[field.type]
            if wire_type != expected:
                raise MalformedWireData(
                    f"Field '{field.name}' ({field.type.label}) arrived with wire type {wire_type}, expected {expected}"
                )

            value, pos = cls._read_value(data, pos, field, resolver, depth)
            cls._store(message, field, value)
        return message

    @classmethod
    def _store(cls, message: DynamicMessage, field: FieldDescriptor, value: Any):
        if field.is_repeated:
            message.append(field.name, value)
        elif field.is_message and message.has(field.name):
            message.get(field.name).merge_from(value)
        else:
            message.set(field.name, value)

    @classmethod
    def _decode_packed(cls, payload: bytes, field: FieldDescriptor, message: DynamicMessage):
        pos = 0
        while pos < len(payload):
            value, pos = cls._read_value(payload, pos, field, None)
            message.append(field.name, value)

    @classmethod
    def _read_value(cls, data: bytes, pos: int, field: FieldDescriptor, resolver, depth: int = 0) -> Tuple[Any, int]:
        field_type = field.type
        if field_type in STRUCT_FORMATS:
            fmt = STRUCT_FORMATS[field_type]
            size = struct.calcsize(fmt)
            if pos + size > len(data):
                raise MalformedWireData(f"Truncated {field_type.label} for field '{field.name}'")
            return struct.unpack_from(fmt, data, pos)[0], pos + size

        if WIRE_TYPES[field_type] == WIRETYPE_VARINT:
            raw, pos = decode_varint(data, pos)
            if field_type in (FieldType.INT32, FieldType.ENUM):
                return _to_signed(raw, 32), pos
            if field_type == FieldType.INT64:
                return _to_signed(raw, 64), pos
            if field_type == FieldType.UINT32:
                return raw & UINT32_MASK, pos
            if field_type == FieldType.SINT32:
                return zigzag_decode(raw & UINT32_MASK), pos
            if field_type == FieldType.SINT64:
                return zigzag_decode(raw), pos
            if field_type == FieldType.BOOL:
                return raw != 0, pos
            return raw, pos

        payload, pos = cls._read_length_delimited(data, pos)
        if field_type == FieldType.STRING:
            try:
                return payload.decode('utf-8'), pos
            except UnicodeDecodeError as e:
                raise MalformedWireData(f"Field '{field.name}' is not valid UTF-8: {e}") from e
        if field_type == FieldType.BYTES:
            return payload, pos
        return cls.decode(payload, resolver.resolve(field.type_name), resolver, depth + 1), pos

    @staticmethod
    def _read_length_delimited(data: bytes, pos: int) -> Tuple[bytes, int]:
        length, pos = decode_varint(data, pos)
        if pos + length > len(data):
            raise MalformedWireData(f"Length {length} at offset {pos} exceeds remaining {len(data) - pos} bytes")
        return data[pos:pos + length], pos + length

    @classmethod
    def _skip(cls, data: bytes, pos: int, number: int, wire_type: int, depth: int = 0) -> int:
        if wire_type == WIRETYPE_VARINT:
            return decode_varint(data, pos)[1]
        if wire_type == WIRETYPE_FIXED64:
            if pos + 8 > len(data):
                raise MalformedWireData(f"Truncated fixed64 for unknown field {number}")
            return pos + 8
        if wire_type == WIRETYPE_FIXED32:
            if pos + 4 > len(data):
                raise MalformedWireData(f"Truncated fixed32 for unknown field {number}")
            return pos + 4
        if wire_type == WIRETYPE_LENGTH_DELIMITED:
            return cls._read_length_delimited(data, pos)[1]
        if wire_type == WIRETYPE_START_GROUP:
            if depth > MAX_RECURSION_DEPTH:
                raise MalformedWireData(f"Group nesting exceeds {MAX_RECURSION_DEPTH} levels")
            while True:
                if pos >= len(data):
                    raise MalformedWireData(f"Unterminated group for field {number}")
                tag, pos = decode_varint(data, pos)
                inner_number, inner_type = tag >> 3, tag & 0x7
                if inner_type == WIRETYPE_END_GROUP:
                    if inner_number != number:
                        raise MalformedWireData(f"Mismatched end group {inner_number}, expected {number}")
                    return pos
                if inner_number == 0 or inner_type > WIRETYPE_FIXED32:
                    raise MalformedWireData(f"Invalid tag inside group {number}")
                pos = cls._skip(data, pos, inner_number, inner_type, depth + 1)
        raise MalformedWireData(f"Unexpected end group for field {number}")

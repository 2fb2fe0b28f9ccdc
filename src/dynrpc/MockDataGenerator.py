import json
from typing import Any, Dict

from dynrpc.DescriptorIndex import DescriptorIndex
from dynrpc.descriptors import (
    FLOAT_TYPES,
    INTEGER_TYPES,
    SIXTY_FOUR_BIT_TYPES,
    FieldDescriptor,
    FieldType,
    MessageDescriptor,
)
from dynrpc.helper import helper
from dynrpc.ProtobufConverter import ProtobufConverter


class MockDataGenerator(helper):
    """Builds request skeletons filled with default values for a message type.

    Repeated fields get a single element, maps a single entry and enums their
    first declared value, so the result doubles as documentation of the shape
    the server expects.
    """

    def __init__(self, index: DescriptorIndex):
        super().__init__()
        self.index = index

    def generate(self, type_name: str) -> str:
        return json.dumps(self.get_message_template(type_name), indent=2)

    def get_message_template(self, type_name: str) -> Dict[str, Any]:
        return self.build_template_from_descriptor(self.index.resolve(type_name), ())

    def build_template_from_descriptor(self, descriptor: MessageDescriptor, seen) -> Dict[str, Any]:
        template = {}
        seen = seen + (id(descriptor),)
        for field in descriptor.fields:
            if field.is_message:
                nested = self.index.resolve(field.type_name)
                if nested.is_map_entry:
                    key_field = nested.field_by_name('key')
                    value_field = nested.field_by_name('value')
                    key = self._default_for_field(key_field, seen)
                    if isinstance(key, bool):
                        key = 'true' if key else 'false'
                    template[field.name] = {str(key): self._default_for_field(value_field, seen)}
                    continue

            value = self._default_for_field(field, seen)
            template[field.name] = [value] if field.is_repeated else value
        return template

    def _default_for_field(self, field: FieldDescriptor, seen) -> Any:
        field_type = field.type

        if field_type == FieldType.MESSAGE:
            nested = self.index.resolve(field.type_name)
            if nested.full_name in ProtobufConverter.WRAPPER_TYPES:
                return self._default_for_field(nested.field_by_name('value'), seen)
            if nested.full_name in ProtobufConverter.CUSTOM_CONVERTERS:
                return ProtobufConverter.CUSTOM_CONVERTERS[nested.full_name][1](0, 0)
            # self-referencing types stop at the first repeat
            if id(nested) in seen:
                return {}
            return self.build_template_from_descriptor(nested, seen)

        if field_type == FieldType.ENUM:
            enum = self.index.resolve_enum(field.type_name)
            if enum is not None and enum.default_name:
                return enum.default_name
            return 0

        if field_type in SIXTY_FOUR_BIT_TYPES:
            return "0"
        if field_type in INTEGER_TYPES:
            return 0
        if field_type in FLOAT_TYPES:
            return 0.0
        if field_type == FieldType.BOOL:
            return False
        return ""

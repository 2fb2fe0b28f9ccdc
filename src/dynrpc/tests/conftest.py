"""Unit tests configuration file."""

import os
import textwrap

# keep test runs from writing error.log into the working directory
os.environ["DYNRPC_LOG_FILE"] = ""

import grpc  # noqa: E402
import pytest  # noqa: E402

from dynrpc.DescriptorIndex import DescriptorIndex  # noqa: E402
from dynrpc.descriptors import (  # noqa: E402
    EnumDescriptor,
    FieldDescriptor,
    FieldType,
    FileDescriptor,
    MessageDescriptor,
    MethodDescriptor,
    ServiceDescriptor,
)


def pytest_configure(config):
    """Disable verbose output when running tests."""
    terminal = config.pluginmanager.getplugin("terminal")
    if terminal:
        terminal.TerminalReporter.showfspath = False


def build_example_file(package="example", name="example.proto"):
    prefix = f".{package}" if package else ""

    inner = MessageDescriptor("Inner", package)
    inner.add_field(FieldDescriptor("label", 1, FieldType.STRING))
    inner.add_field(FieldDescriptor("code", 2, FieldType.FIXED32))

    scores_entry = MessageDescriptor("ScoresEntry", package, is_map_entry=True)
    scores_entry.add_field(FieldDescriptor("key", 1, FieldType.STRING))
    scores_entry.add_field(FieldDescriptor("value", 2, FieldType.INT32))

    flags_entry = MessageDescriptor("FlagsEntry", package, is_map_entry=True)
    flags_entry.add_field(FieldDescriptor("key", 1, FieldType.INT64))
    flags_entry.add_field(FieldDescriptor("value", 2, FieldType.MESSAGE, type_name=f"{prefix}.HelloRequest.Inner"))

    request = MessageDescriptor("HelloRequest", package)
    request.add_field(FieldDescriptor("name", 1, FieldType.STRING))
    request.add_field(FieldDescriptor("count", 2, FieldType.INT32))
    request.add_field(FieldDescriptor("ids", 3, FieldType.INT64, is_repeated=True))
    request.add_field(FieldDescriptor("scores", 4, FieldType.MESSAGE, is_repeated=True, type_name=f"{prefix}.HelloRequest.ScoresEntry"))
    request.add_field(FieldDescriptor("color", 5, FieldType.ENUM, type_name=f"{prefix}.Color"))
    request.add_field(FieldDescriptor("payload", 6, FieldType.BYTES))
    request.add_field(FieldDescriptor("inner", 7, FieldType.MESSAGE, type_name=f"{prefix}.HelloRequest.Inner"))
    request.add_field(FieldDescriptor("ratio", 8, FieldType.DOUBLE))
    request.add_field(FieldDescriptor("weight", 9, FieldType.FLOAT))
    request.add_field(FieldDescriptor("flag", 10, FieldType.BOOL))
    request.add_field(FieldDescriptor("big", 11, FieldType.UINT64))
    request.add_field(FieldDescriptor("delta", 12, FieldType.SINT32))
    request.add_field(FieldDescriptor("stamp", 13, FieldType.SFIXED64))
    request.add_field(FieldDescriptor("items", 14, FieldType.MESSAGE, is_repeated=True, type_name=f"{prefix}.HelloRequest.Inner"))
    request.add_field(FieldDescriptor("display_name", 15, FieldType.STRING))
    request.add_field(FieldDescriptor("flags", 16, FieldType.MESSAGE, is_repeated=True, type_name=f"{prefix}.HelloRequest.FlagsEntry"))
    request.add_field(FieldDescriptor("levels", 17, FieldType.SINT64, is_repeated=True))
    request.add_nested_message(inner)
    request.add_nested_message(scores_entry)
    request.add_nested_message(flags_entry)
    request.add_nested_enum(EnumDescriptor("Mood", (("CALM", 0), ("ANGRY", 1))))

    reply = MessageDescriptor("HelloReply", package)
    reply.add_field(FieldDescriptor("message", 1, FieldType.STRING))
    reply.add_field(FieldDescriptor("total", 2, FieldType.INT64))

    service_name = f"{package}.Greeter" if package else "Greeter"
    service = ServiceDescriptor("Greeter", service_name, (
        MethodDescriptor("SayHello", service_name, f"{prefix}.HelloRequest", f"{prefix}.HelloReply"),
        MethodDescriptor("StreamHello", service_name, f"{prefix}.HelloRequest", f"{prefix}.HelloReply", server_streaming=True),
        MethodDescriptor("UploadHello", service_name, f"{prefix}.HelloRequest", f"{prefix}.HelloReply", client_streaming=True),
    ))

    return FileDescriptor(
        name=name,
        package=package,
        messages=(request, reply),
        enums=(EnumDescriptor("Color", (("RED", 0), ("GREEN", 1), ("BLUE", 2))),),
        services=(service,),
    )


def build_empty_file():
    return FileDescriptor(
        name="google/protobuf/empty.proto",
        package="google.protobuf",
        messages=(MessageDescriptor("Empty", "google.protobuf"),),
    )


def build_well_known_file():
    messages = []
    for name in ("Timestamp", "Duration"):
        message = MessageDescriptor(name, "google.protobuf")
        message.add_field(FieldDescriptor("seconds", 1, FieldType.INT64))
        message.add_field(FieldDescriptor("nanos", 2, FieldType.INT32))
        messages.append(message)
    for name, value_type in (
        ("Int64Value", FieldType.INT64),
        ("FloatValue", FieldType.FLOAT),
        ("BoolValue", FieldType.BOOL),
        ("StringValue", FieldType.STRING),
        ("BytesValue", FieldType.BYTES),
    ):
        message = MessageDescriptor(name, "google.protobuf")
        message.add_field(FieldDescriptor("value", 1, value_type))
        messages.append(message)
    return FileDescriptor(name="google/protobuf/well_known.proto", package="google.protobuf", messages=tuple(messages))


def build_event_file():
    event = MessageDescriptor("Event", "calendar")
    event.add_field(FieldDescriptor("created", 1, FieldType.MESSAGE, type_name=".google.protobuf.Timestamp"))
    event.add_field(FieldDescriptor("length", 2, FieldType.MESSAGE, type_name=".google.protobuf.Duration"))
    event.add_field(FieldDescriptor("retries", 3, FieldType.MESSAGE, type_name=".google.protobuf.Int64Value"))
    event.add_field(FieldDescriptor("ratio", 4, FieldType.MESSAGE, type_name=".google.protobuf.FloatValue"))
    event.add_field(FieldDescriptor("active", 5, FieldType.MESSAGE, type_name=".google.protobuf.BoolValue"))
    event.add_field(FieldDescriptor("note", 6, FieldType.MESSAGE, type_name=".google.protobuf.StringValue"))
    event.add_field(FieldDescriptor("blob", 7, FieldType.MESSAGE, type_name=".google.protobuf.BytesValue"))
    event.add_field(
        FieldDescriptor("history", 8, FieldType.MESSAGE, is_repeated=True, type_name=".google.protobuf.Timestamp")
    )
    return FileDescriptor(
        name="calendar.proto",
        package="calendar",
        dependencies=("google/protobuf/well_known.proto",),
        messages=(event,),
    )


@pytest.fixture
def index():
    return DescriptorIndex([build_empty_file(), build_example_file()])


@pytest.fixture
def event_index():
    return DescriptorIndex([build_well_known_file(), build_event_file()])


@pytest.fixture
def event_descriptor(event_index):
    return event_index.resolve("calendar.Event")


@pytest.fixture
def request_descriptor(index):
    return index.resolve(".example.HelloRequest")


@pytest.fixture
def say_hello(index):
    return index.find_method("example.Greeter", "SayHello")


class FakeRpcError(grpc.RpcError):
    def __init__(self, code, details="", initial=(), trailing=(), debug=None):
        super().__init__(details)
        self._code = code
        self._details = details
        self._initial = initial
        self._trailing = trailing
        self._debug = debug

    def code(self):
        return self._code

    def details(self):
        return self._details

    def initial_metadata(self):
        return self._initial

    def trailing_metadata(self):
        return self._trailing

    def debug_error_string(self):
        return self._debug


class FakeCall:
    """Stands in for the future returned by ``UnaryUnaryMultiCallable.future``."""

    def __init__(self, response=b"", error=None, headers=(), trailers=(), done=True):
        self.response = response
        self.error = error
        self.headers = headers
        self.trailers = trailers
        self._done = done
        self.cancelled = False

    def done(self):
        return self._done

    def cancel(self):
        self.cancelled = True
        self._done = True
        return True

    def result(self):
        if self.cancelled:
            raise grpc.FutureCancelledError()
        if self.error is not None:
            raise self.error
        return self.response

    def initial_metadata(self):
        return self.headers

    def trailing_metadata(self):
        return self.trailers


class FakeChannel:
    def __init__(self, call):
        self.call = call
        self.requests = []
        self.closed = False

    def unary_unary(self, path, request_serializer=None, response_deserializer=None):
        channel = self

        class Multicallable:
            def future(self, request, timeout=None, metadata=None):
                channel.requests.append((path, request, timeout, metadata))
                return channel.call

        return Multicallable()

    def close(self):
        self.closed = True


class FakeChannelFactory:
    """Records every address it is asked to connect to."""

    def __init__(self, call=None):
        self.call = call or FakeCall()
        self.addresses = []
        self.channels = []

    def __call__(self, address):
        self.addresses.append(address)
        channel = FakeChannel(self.call)
        self.channels.append(channel)
        return channel


COMMON_PROTO = """
syntax = "proto3";
package shop.common;

message Money {
  string currency = 1;
  int64 units = 2;
}
"""

ORDERS_PROTO = """
syntax = "proto3";
package shop.orders;

import "common/money.proto";
import "google/protobuf/empty.proto";

enum Status {
  STATUS_UNKNOWN = 0;
  STATUS_PAID = 1;
}

message Order {
  message Line {
    string sku = 1;
    uint32 quantity = 2;
  }
  string id = 1;
  repeated Line lines = 2;
  shop.common.Money total = 3;
  Status status = 4;
  map<string, string> labels = 5;
  bytes receipt_pdf = 6;
}

message GetOrderRequest {
  string order_id = 1;
}

service Orders {
  rpc GetOrder(GetOrderRequest) returns (Order);
  rpc Ping(google.protobuf.Empty) returns (google.protobuf.Empty);
  rpc Watch(GetOrderRequest) returns (stream Order);
}
"""


@pytest.fixture
def proto_tree(tmp_path):
    (tmp_path / "common").mkdir()
    (tmp_path / "common" / "money.proto").write_text(textwrap.dedent(COMMON_PROTO))
    (tmp_path / "orders").mkdir()
    orders = tmp_path / "orders" / "orders.proto"
    orders.write_text(textwrap.dedent(ORDERS_PROTO))
    return tmp_path

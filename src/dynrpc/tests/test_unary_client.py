"""Tests for unary call orchestration against a fake channel."""

import json
import threading

import grpc
import pytest
from pytest import raises

from conftest import FakeCall, FakeChannelFactory, FakeRpcError
from dynrpc.descriptors import MethodDescriptor
from dynrpc.errors import (
    InvalidAddress,
    InvalidInputEncoding,
    MalformedWireData,
    MessageTypeNotFound,
    RpcFailed,
    StreamingNotSupported,
    Timeout,
    TypeMismatch,
    Unavailable,
    Unknown,
)
from dynrpc.grpcunaryclient import grpcunaryclient
from dynrpc.metadata import GrpcMetadata

# HelloReply{message: "hi", total: 5}
REPLY_BYTES = b"\x0a\x02hi\x10\x05"


@pytest.fixture
def factory():
    return FakeChannelFactory(FakeCall(REPLY_BYTES, headers=(("server", "fake"),), trailers=(("cost", "1"),)))


@pytest.fixture
def client(index, factory):
    return grpcunaryclient(index, channel_factory=factory)


def describe_execute_unary():
    def returns_decoded_json(expect, client, say_hello):
        response = client.execute_unary('{"name": "bob"}', "localhost", say_hello)
        expect(json.loads(response.response_json)) == {"message": "hi", "total": "5"}
        expect(response.status_code) == 0
        expect(response.status_message) == "OK"
        expect(response.elapsed_seconds >= 0) == True
        expect(response.headers) == {"server": "fake"}
        expect(response.trailers) == {"cost": "1"}

    def sends_encoded_request_to_method_path(expect, client, factory, say_hello):
        client.execute_unary('{"name": "bob", "count": 2}', "localhost:6000", say_hello, timeout=3.5)
        path, request, timeout, _ = factory.channels[0].requests[0]
        expect(path) == "/example.Greeter/SayHello"
        expect(request) == b"\x0a\x03bob\x10\x02"
        expect(timeout) == 3.5
        expect(factory.addresses[0].target) == "localhost:6000"

    def closes_the_channel(expect, client, factory, say_hello):
        client.execute_unary("{}", "localhost", say_hello)
        expect(factory.channels[0].closed) == True

    def selects_tls_from_the_port(expect, client, factory, say_hello):
        client.execute_unary("{}", "https://api.example.com:443", say_hello)
        expect(factory.addresses[0].use_tls) == True

    def sends_binary_metadata_as_bytes(expect, client, factory, say_hello):
        metadata = GrpcMetadata({"X-Trace": "t1", "token-bin": "raw"})
        client.execute_unary("{}", "localhost", say_hello, metadata=metadata)
        sent = factory.channels[0].requests[0][3]
        expect(sorted(sent)) == [("token-bin", b"raw"), ("x-trace", "t1")]

    def accepts_metadata_as_pairs(expect, client, factory, say_hello):
        client.execute_unary("{}", "localhost", say_hello, metadata=[{"key": "a", "value": "1"}])
        expect(factory.channels[0].requests[0][3]) == [("a", "1")]

    def normalizes_smart_quotes(expect, client, factory, say_hello):
        client.execute_unary("{“name”: “bob”}", "localhost", say_hello)
        expect(factory.channels[0].requests[0][1]) == b"\x0a\x03bob"

    def accepts_empty_response(expect, index, say_hello):
        client = grpcunaryclient(index, channel_factory=FakeChannelFactory(FakeCall(b"")))
        expect(client.execute_unary("{}", "localhost", say_hello).response_json) == "{}"


def describe_failures_before_io():
    def rejects_server_streaming(expect, client, factory, index):
        with raises(StreamingNotSupported):
            client.execute_unary("{}", "localhost", index.find_method("example.Greeter", "StreamHello"))
        expect(factory.addresses) == []

    def rejects_client_streaming(expect, client, factory, index):
        with raises(Unknown):
            client.execute_unary("{}", "localhost", index.find_method("example.Greeter", "UploadHello"))
        expect(factory.addresses) == []

    def rejects_malformed_json(expect, client, factory, say_hello):
        with raises(InvalidInputEncoding):
            client.execute_unary("{invalid json", "localhost", say_hello)
        expect(factory.addresses) == []

    def rejects_type_mismatches(expect, client, factory, say_hello):
        with raises(TypeMismatch):
            client.execute_unary('{"count": "many"}', "localhost", say_hello)
        expect(factory.addresses) == []

    def rejects_unknown_types(expect, client, factory):
        method = MethodDescriptor("Lost", "example.Greeter", ".example.Missing", ".example.HelloReply")
        with raises(MessageTypeNotFound):
            client.execute_unary("{}", "localhost", method)
        expect(factory.addresses) == []

    def rejects_empty_address(expect, client, factory, say_hello):
        with raises(InvalidAddress):
            client.execute_unary("{}", "", say_hello)
        expect(factory.addresses) == []


def describe_transport_failures():
    def classifies(expect, index, say_hello):
        cases = [
            (FakeRpcError(grpc.StatusCode.UNAVAILABLE, "down"), Unavailable),
            (FakeRpcError(grpc.StatusCode.DEADLINE_EXCEEDED, "late"), Timeout),
            (FakeRpcError(grpc.StatusCode.PERMISSION_DENIED, "no"), RpcFailed),
            (RuntimeError("socket exploded"), Unknown),
        ]
        for error, expected in cases:
            factory = FakeChannelFactory(FakeCall(error=error))
            client = grpcunaryclient(index, channel_factory=factory)
            with raises(expected):
                client.execute_unary("{}", "localhost", say_hello)
            expect(factory.channels[0].closed) == True

    def keeps_status_details(expect, index, say_hello):
        error = FakeRpcError(grpc.StatusCode.INVALID_ARGUMENT, "bad name", trailing=(("why", "empty"),))
        client = grpcunaryclient(index, channel_factory=FakeChannelFactory(FakeCall(error=error)))
        with raises(RpcFailed) as excinfo:
            client.execute_unary("{}", "localhost", say_hello)
        expect(excinfo.value.status_code) == 3
        expect(excinfo.value.trailers) == {"why": "empty"}

    def reports_malformed_responses(expect, index, say_hello):
        client = grpcunaryclient(index, channel_factory=FakeChannelFactory(FakeCall(b"\x0a\x09hi")))
        with raises(MalformedWireData):
            client.execute_unary("{}", "localhost", say_hello)

    def classifies_channel_factory_failures(expect, index, say_hello):
        def broken_factory(address):
            raise OSError("no route")

        client = grpcunaryclient(index, channel_factory=broken_factory)
        with raises(Unknown):
            client.execute_unary("{}", "localhost", say_hello)


def describe_cancellation():
    def cancel_event_aborts_a_pending_call(expect, index, say_hello):
        call = FakeCall(REPLY_BYTES, done=False)
        client = grpcunaryclient(index, channel_factory=FakeChannelFactory(call))
        cancel_event = threading.Event()
        cancel_event.set()

        with raises(Unknown):
            client.execute_unary("{}", "localhost", say_hello, cancel_event=cancel_event)
        expect(call.cancelled) == True

    def unset_event_waits_for_completion(expect, index, say_hello):
        call = FakeCall(REPLY_BYTES, done=False)
        client = grpcunaryclient(index, channel_factory=FakeChannelFactory(call))
        cancel_event = threading.Event()
        threading.Timer(0.1, lambda: setattr(call, "_done", True)).start()

        response = client.execute_unary("{}", "localhost", say_hello, cancel_event=cancel_event)
        expect(call.cancelled) == False
        expect(json.loads(response.response_json)["message"]) == "hi"


def describe_resolve_descriptor():
    def delegates_to_the_index(expect, client):
        expect(client.resolve_descriptor(".example.HelloReply").name) == "HelloReply"

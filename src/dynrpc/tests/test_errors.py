"""Tests for transport error classification."""

import grpc

from conftest import FakeRpcError
from dynrpc.errors import (
    RpcFailed,
    StreamingNotSupported,
    Timeout,
    TypeMismatch,
    Unavailable,
    Unknown,
    classify,
)


def describe_classify():
    def unavailable(expect):
        error = classify(FakeRpcError(grpc.StatusCode.UNAVAILABLE, "connection refused"))
        expect(type(error)) == Unavailable
        expect(str(error)) == "connection refused"

    def deadline_exceeded(expect):
        expect(type(classify(FakeRpcError(grpc.StatusCode.DEADLINE_EXCEEDED)))) == Timeout

    def future_timeout(expect):
        expect(type(classify(grpc.FutureTimeoutError()))) == Timeout

    def other_status_codes(expect):
        error = classify(FakeRpcError(
            grpc.StatusCode.NOT_FOUND,
            "no such user",
            initial=(("x-request-id", "abc"),),
            trailing=(("retry-after", "5"),),
            debug="debug text",
        ))
        expect(type(error)) == RpcFailed
        expect(error.status_code) == 5
        expect(error.status_message) == "no such user"
        expect(error.headers) == {"x-request-id": "abc"}
        expect(error.trailers) == {"retry-after": "5"}
        expect(error.to_dict()["status_name"]) == "NOT_FOUND"
        expect(error.to_dict()["debug"]) == "debug text"

    def errors_without_status(expect):
        error = classify(RuntimeError("boom"))
        expect(type(error)) == Unknown
        expect("boom" in str(error)) == True

    def cancellation(expect):
        expect(type(classify(grpc.FutureCancelledError()))) == Unknown

    def passes_classified_errors_through(expect):
        original = TypeMismatch("count", "bad")
        assert classify(original) is original


def describe_to_dict():
    def carries_kind_and_message(expect):
        expect(TypeMismatch("count", "bad").to_dict()) == {
            "kind": "type_mismatch",
            "message": "Type mismatch for field 'count': bad",
            "field": "count",
        }

    def streaming_rejection_is_unknown(expect):
        error = StreamingNotSupported("/example.Greeter/StreamHello")
        expect(isinstance(error, Unknown)) == True
        expect(error.to_dict()["kind"]) == "streaming_not_supported"

"""Tests for writing responses to disk."""

import json
from datetime import datetime

from dynrpc.export import default_export_filename, export_response
from dynrpc.grpcunaryclient import UnaryResponse


def describe_default_export_filename():
    def uses_a_timestamp(expect):
        expect(default_export_filename(datetime(2024, 3, 9, 14, 5, 7))) == "response_20240309_140507.json"


def describe_export_response():
    def writes_the_body(expect, tmp_path):
        response = UnaryResponse(response_json='{\n  "a": 1\n}', elapsed_seconds=0.25)
        destination = export_response(response, tmp_path / "out" / "reply.json")
        expect(destination.read_text(encoding="utf-8")) == '{\n  "a": 1\n}'

    def wraps_with_metadata(expect, tmp_path):
        response = UnaryResponse(response_json="{}", elapsed_seconds=0.5)
        destination = export_response(response, tmp_path / "reply.json", include_metadata=True)
        written = json.loads(destination.read_text(encoding="utf-8"))
        expect(written["response"]) == "{}"
        expect(written["responseTime"]) == 0.5
        expect(written["statusCode"]) == 0
        expect(written["statusMessage"]) == "OK"
        expect("exportedAt" in written) == True

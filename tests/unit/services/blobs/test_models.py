"""
Unit tests for blob service models.

Tests metadata header encoding, metadata records and operation selection.
"""

import base64
import json

import pytest

from localblobs.services.blobs.api import select_operation
from localblobs.services.blobs.exceptions import InvalidMetadataError, MissingKeyError
from localblobs.services.blobs.models import (
    BASE64_PREFIX,
    DEFAULT_CONTENT_TYPE,
    METADATA_HEADER,
    BlobAddress,
    BlobRecord,
    ListResult,
    Operation,
    decode_metadata,
    encode_metadata,
)


class TestMetadataHeader:
    """Test encoding of the user metadata header."""

    def test_encode(self):
        encoded = encode_metadata({"a": 1})
        assert encoded.startswith(BASE64_PREFIX)
        payload = base64.b64decode(encoded[len(BASE64_PREFIX):])
        assert json.loads(payload) == {"a": 1}

    def test_encode_empty(self):
        assert encode_metadata({}) is None
        assert encode_metadata(None) is None

    def test_decode_base64(self):
        header = BASE64_PREFIX + base64.b64encode(b'{"name": "value"}').decode()
        assert decode_metadata(header) == {"name": "value"}

    def test_decode_plain_json(self):
        assert decode_metadata('{"nested": {"x": [1, 2]}}') == {"nested": {"x": [1, 2]}}

    def test_decode_missing(self):
        assert decode_metadata(None) == {}
        assert decode_metadata("") == {}

    def test_decode_reverses_encode(self):
        metadata = {"unicode": "héllo", "count": 3}
        assert decode_metadata(encode_metadata(metadata)) == metadata

    @pytest.mark.parametrize("header", [
        "b64;!!!not-base64",
        "not json",
        "[1, 2, 3]",
        '"a string"',
        BASE64_PREFIX + base64.b64encode(b"42").decode(),
    ])
    def test_decode_invalid(self, header):
        with pytest.raises(InvalidMetadataError):
            decode_metadata(header)


class TestBlobRecord:
    """Test the metadata sidecar model."""

    def test_defaults(self):
        record = BlobRecord()
        assert record.content_type == DEFAULT_CONTENT_TYPE
        assert record.etag is None
        assert record.metadata == {}

    def test_to_headers(self):
        record = BlobRecord(content_type="text/plain", etag="abc", metadata={"k": "v"})
        headers = record.to_headers()
        assert headers["Content-Type"] == "text/plain"
        assert headers["ETag"] == '"abc"'
        assert decode_metadata(headers[METADATA_HEADER]) == {"k": "v"}

    def test_to_headers_minimal(self):
        assert BlobRecord().to_headers() == {"Content-Type": DEFAULT_CONTENT_TYPE}

    def test_json_round_trip(self):
        record = BlobRecord(content_type="image/png", etag="e", metadata={"a": [1]})
        assert BlobRecord.model_validate_json(record.model_dump_json()) == record

    def test_list_result_defaults(self):
        assert ListResult().model_dump() == {"blobs": [], "directories": []}


class TestBlobAddress:
    """Test blob address helpers."""

    def test_key_segments(self):
        assert BlobAddress("s", "t", "a/b/c").key_segments == ["a", "b", "c"]
        assert BlobAddress("s", "t").key_segments == []

    def test_identity_ignores_region(self):
        assert BlobAddress("s", "t", "k", region="eu").identity() == BlobAddress("s", "t", "k").identity()

    def test_operation_requires_key(self):
        assert not Operation.LIST.requires_key
        for operation in (Operation.GET, Operation.GET_METADATA, Operation.SET, Operation.DELETE):
            assert operation.requires_key


class TestSelectOperation:
    """Test mapping of HTTP methods onto blob operations."""

    KEYED = BlobAddress("site", "store", "key")
    STORE = BlobAddress("site", "store")

    @pytest.mark.parametrize("method,expected", [
        ("GET", Operation.GET),
        ("HEAD", Operation.GET_METADATA),
        ("PUT", Operation.SET),
        ("DELETE", Operation.DELETE),
        ("get", Operation.GET),
    ])
    def test_methods(self, method, expected):
        assert select_operation(method, self.KEYED, {}) == expected

    def test_metadata_query(self):
        assert select_operation("GET", self.KEYED, {"metadata": "true"}) == Operation.GET_METADATA
        assert select_operation("GET", self.KEYED, {"metadata": "false"}) == Operation.GET

    def test_get_on_store_lists(self):
        assert select_operation("GET", self.STORE, {}) == Operation.LIST

    def test_writes_on_store_keep_their_operation(self):
        """Test that keyless writes are reported as writes, not lists."""
        assert select_operation("PUT", self.STORE, {}) == Operation.SET
        assert select_operation("DELETE", self.STORE, {}) == Operation.DELETE

    def test_unsupported_method(self):
        assert select_operation("POST", self.KEYED, {}) is None


class TestErrorBodies:
    """Test error payloads."""

    def test_missing_key_error(self):
        error = MissingKeyError("delete")
        assert error.to_dict() == {
            "error": {
                "code": "MissingKey",
                "message": "Operation 'delete' requires a blob key",
                "details": {"operation": "delete"},
            }
        }

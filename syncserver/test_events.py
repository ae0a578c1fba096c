"""Tests for syncserver.events wire messages."""

import json

import pytest

from syncserver.events import (
    ClientFileChangeRequest,
    ErrorEvent,
    EventType,
    FileChangeEvent,
    InitialSyncEvent,
    ProtocolError,
    deserialize_event,
    parse_client_request,
    serialize_event,
)


class TestServerMessages:
    def test_initial_sync_shape(self):
        event = InitialSyncEvent(
            files=[{"path": "/flows/a.ts", "content": "YQ=="}],
            directory="/repo/flows",
        )
        data = json.loads(serialize_event(event))
        assert data["type"] == "initial-sync"
        assert data["files"] == [{"path": "/flows/a.ts", "content": "YQ=="}]
        assert data["directory"] == "/repo/flows"
        assert "timestamp" in data
        assert event.paths == ["/flows/a.ts"]

    def test_file_change_with_content(self):
        data = FileChangeEvent(event="add", path="/flows/a.ts", content="YQ==").to_dict()
        assert data["type"] == "file-change"
        assert data["event"] == "add"
        assert data["content"] == "YQ=="

    def test_delete_has_no_content_key(self):
        data = FileChangeEvent(event="delete", path="/flows/a.ts").to_dict()
        assert "content" not in data

    def test_error_event(self):
        data = ErrorEvent(error="bad", error_type="ProtocolError").to_dict()
        assert data["type"] == "error"
        assert data["error_type"] == "ProtocolError"


class TestDeserialize:
    def test_round_trip_file_change(self):
        original = FileChangeEvent(event="change", path="/x.ts", content="eA==")
        restored = deserialize_event(serialize_event(original))
        assert isinstance(restored, FileChangeEvent)
        assert restored.type == EventType.FILE_CHANGE
        assert restored.path == "/x.ts"

    def test_unknown_fields_dropped(self):
        raw = json.dumps({"type": "client-file-change", "event": "delete", "path": "/a", "extra": 1})
        event = deserialize_event(raw)
        assert isinstance(event, ClientFileChangeRequest)
        assert not hasattr(event, "extra")

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '{"type": "nope"}', '{"no": "type"}'])
    def test_malformed(self, raw):
        with pytest.raises(ProtocolError):
            deserialize_event(raw)


class TestParseClientRequest:
    def test_write(self):
        raw = json.dumps({"type": "client-file-change", "event": "write", "path": "/flows/a.ts",
                          "content": "YQ=="})
        request = parse_client_request(raw)
        assert request.event == "write"
        assert request.content == "YQ=="

    def test_delete_without_content(self):
        raw = json.dumps({"type": "client-file-change", "event": "delete", "path": "/flows/a.ts"})
        assert parse_client_request(raw).content is None

    def test_write_without_content_rejected(self):
        raw = json.dumps({"type": "client-file-change", "event": "write", "path": "/flows/a.ts"})
        with pytest.raises(ProtocolError, match="without content"):
            parse_client_request(raw)

    def test_unknown_action(self):
        raw = json.dumps({"type": "client-file-change", "event": "rename", "path": "/a"})
        with pytest.raises(ProtocolError):
            parse_client_request(raw)

    def test_missing_path(self):
        raw = json.dumps({"type": "client-file-change", "event": "delete", "path": ""})
        with pytest.raises(ProtocolError):
            parse_client_request(raw)

    def test_nul_byte_in_path_rejected(self):
        raw = json.dumps({"type": "client-file-change", "event": "write",
                          "path": "/flows/a\u0000.ts", "content": "YQ=="})
        with pytest.raises(ProtocolError, match="NUL"):
            parse_client_request(raw)

    def test_server_message_from_client_rejected(self):
        raw = serialize_event(FileChangeEvent(event="add", path="/a", content=""))
        with pytest.raises(ProtocolError, match="Unexpected"):
            parse_client_request(raw)

    def test_protocol_error_is_value_error(self):
        assert issubclass(ProtocolError, ValueError)

# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for artifact serialization.

This test module validates:
- Lossless round trips for both formats, compressed or not, for both
  document kinds
- Marker byte layout and legacy (unmarked) artifact sniffing
- InvalidDataError on every kind of corrupt input
- Atomic save with parent directory creation
"""

import gzip
import json
from datetime import datetime, timezone

import cbor2
import pytest

from codebase_index.models import (
    Codebase,
    MethodDefinition,
    ParameterDefinition,
    PropertyDefinition,
    SourceFile,
    TypeDefinition,
    TypeKind,
    TypeRelationship,
)
from codebase_index.serializer import (
    MARKER_CBOR,
    MARKER_COMPRESSED,
    MARKER_JSON,
    CborSerializer,
    InvalidDataError,
    JsonSerializer,
    artifact_info,
    binary_to_text,
    detect_format,
    document_to_text,
    load_artifact,
    load_artifact_file,
    serializer_for,
    text_to_binary,
    text_to_document,
    validate_text,
)
from codebase_index.token_optimizer import TokenOptimizer

TIMESTAMP = datetime(2024, 2, 29, 23, 59, 59, 999000, tzinfo=timezone.utc)

ALL_SERIALIZERS = [
    JsonSerializer(compress=False, indent=True),
    JsonSerializer(compress=True),
    CborSerializer(compress=False),
    CborSerializer(compress=True),
]

# Nested far beyond the interpreter recursion limit
DEEPLY_NESTED_TEXT = '{"schema":"codebase","version":"1.0","data":' + "[" * 200000 + "]" * 200000 + "}"


def _codebase() -> Codebase:
    repository = TypeDefinition(
        name="Repository",
        namespace="Data",
        kind=TypeKind.CLASS,
        is_abstract=True,
        is_partial=True,
        documentation="Stores entities. Ünïcödé → ok",
        methods=[
            MethodDefinition(
                name="Save",
                return_type="Task",
                is_async=True,
                is_virtual=True,
                start_line=12,
                end_line=30,
                parameters=[
                    ParameterDefinition(name="entity", type_name="T"),
                    ParameterDefinition(name="token", type_name="CancellationToken", is_optional=True),
                    ParameterDefinition(name="count", type_name="int", is_by_ref=True),
                ],
            )
        ],
        properties=[
            PropertyDefinition(
                name="Count",
                type_name="int",
                has_setter=False,
                has_private_setter=True,
                is_static=True,
            )
        ],
        relationships=[TypeRelationship(kind="dependency", target_type="ILogger", description="ctor")],
    )
    entry = TypeDefinition(
        name="Entry",
        namespace="Data",
        kind=TypeKind.STRUCT,
        is_sealed=True,
        is_nested=True,
        parent_type_name="Repository",
    )
    return Codebase(
        root_directory="/src/app",
        created_at=TIMESTAMP,
        files=[
            SourceFile(
                absolute_path="/src/app/Data/Repository.cs",
                relative_path="Data/Repository.cs",
                language="csharp",
                size_bytes=4096,
                last_modified=TIMESTAMP,
                namespaces=["Data"],
                imports=["System", "System.Threading"],
                types=[repository, entry],
            ),
            SourceFile(
                absolute_path="/src/app/empty.cs",
                relative_path="empty.cs",
                language="csharp",
                last_modified=TIMESTAMP,
            ),
        ],
    )


class TestRoundTrip:
    """Lossless round trips."""

    @pytest.mark.parametrize("serializer", ALL_SERIALIZERS, ids=lambda s: f"{s.format_name}-{s.compress}")
    def test_codebase_round_trip(self, serializer):
        codebase = _codebase()
        restored = serializer.deserialize(serializer.serialize(codebase))
        assert restored == codebase
        assert restored is not codebase

    @pytest.mark.parametrize("serializer", ALL_SERIALIZERS, ids=lambda s: f"{s.format_name}-{s.compress}")
    def test_optimized_round_trip(self, serializer):
        optimized = TokenOptimizer().optimize(_codebase())
        restored = serializer.deserialize(serializer.serialize(optimized))
        assert restored == optimized

    def test_empty_codebase_round_trip(self):
        codebase = Codebase(root_directory="/nothing", created_at=TIMESTAMP)
        for serializer in ALL_SERIALIZERS:
            assert serializer.deserialize(serializer.serialize(codebase)) == codebase

    def test_compressed_output_is_reproducible(self):
        serializer = JsonSerializer(compress=True)
        codebase = _codebase()
        assert serializer.serialize(codebase) == serializer.serialize(codebase)

    def test_none_document_rejected(self):
        with pytest.raises(ValueError):
            JsonSerializer().serialize(None)

    def test_unsupported_document_rejected(self):
        with pytest.raises(TypeError):
            JsonSerializer().serialize({"not": "a codebase"})


class TestMarker:
    """Marker byte layout."""

    def test_marker_values(self):
        assert JsonSerializer(compress=False).serialize(_codebase())[0] == MARKER_JSON
        assert JsonSerializer(compress=True).serialize(_codebase())[0] == MARKER_JSON | MARKER_COMPRESSED
        assert CborSerializer(compress=False).serialize(_codebase())[0] == MARKER_CBOR
        assert CborSerializer(compress=True).serialize(_codebase())[0] == MARKER_CBOR | MARKER_COMPRESSED

    def test_compressed_payload_is_gzip(self):
        data = JsonSerializer(compress=True).serialize(_codebase())
        assert data[1:3] == b"\x1f\x8b"

    def test_uncompressed_json_payload_is_readable_text(self):
        data = JsonSerializer(compress=False, indent=True).serialize(_codebase())
        envelope = json.loads(data[1:].decode("utf-8"))
        assert envelope["schema"] == "codebase"
        assert envelope["version"] == "1.0"
        assert envelope["generator"] == "codebase-index"
        assert envelope["format"] == "json"
        assert "\n  " in data[1:].decode("utf-8")

    def test_compressed_json_is_not_indented(self):
        serializer = JsonSerializer(compress=True, indent=True)
        assert serializer.indent is False

    def test_cbor_payload_is_a_map(self):
        data = CborSerializer(compress=False).serialize(_codebase())
        value = cbor2.loads(data[1:])
        assert value["schema"] == "codebase"
        assert value["format"] == "cbor"

    def test_format_mismatch_rejected(self):
        data = CborSerializer(compress=False).serialize(_codebase())
        with pytest.raises(InvalidDataError, match="expected json"):
            JsonSerializer().deserialize(data)


class TestLegacyArtifacts:
    """Unmarked artifacts are sniffed."""

    def _text(self) -> str:
        return document_to_text(_codebase())

    def test_raw_json(self):
        data = self._text().encode("utf-8")
        assert JsonSerializer().deserialize(data) == _codebase()

    def test_gzip_json(self):
        data = gzip.compress(self._text().encode("utf-8"))
        assert JsonSerializer(compress=False).deserialize(data) == _codebase()

    def test_raw_cbor(self):
        data = text_to_binary(self._text())
        assert CborSerializer().deserialize(data) == _codebase()

    def test_gzip_cbor(self):
        data = gzip.compress(text_to_binary(self._text()))
        assert CborSerializer().deserialize(data) == _codebase()

    def test_detect_format(self):
        text = self._text()
        assert detect_format(text.encode("utf-8")) == ("json", False)
        assert detect_format(gzip.compress(text.encode("utf-8"))) == ("json", True)
        assert detect_format(text_to_binary(text)) == ("cbor", False)
        assert detect_format(gzip.compress(text_to_binary(text))) == ("cbor", True)
        assert detect_format(CborSerializer(compress=True).serialize(_codebase())) == ("cbor", True)

    def test_load_artifact_any_format(self):
        for serializer in ALL_SERIALIZERS:
            assert load_artifact(serializer.serialize(_codebase())) == _codebase()
        assert load_artifact(self._text().encode("utf-8")) == _codebase()


class TestInvalidData:
    """Every decoding failure surfaces as InvalidDataError."""

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"   ",
            b"[1, 2, 3]",
            b"not json at all",
            b"{not valid json}",
            b"\x01",
            b"\x01\xff\xfe{}",
            b"\x11" + b"\x1f\x8b garbage",
            b'\x01{"schema": "codebase"}',
            b'\x01{"schema": "unknown", "version": "1.0", "data": {}}',
            b'\x01{"schema": "codebase", "version": "9.0", "data": {}}',
            b'\x01{"schema": "codebase", "version": "1.0", "data": {"files": []}}',
            b"\x01" + DEEPLY_NESTED_TEXT.encode("utf-8"),
            b"\x11" + gzip.compress(DEEPLY_NESTED_TEXT.encode("utf-8")),
        ],
    )
    def test_json_rejects(self, data):
        with pytest.raises(InvalidDataError):
            JsonSerializer().deserialize(data)

    @pytest.mark.parametrize(
        "data",
        [
            b"\x02",
            b"\x02\xff\xff\xff",
            b"\x02" + cbor2.dumps([1, 2, 3]),
            b"\x12" + gzip.compress(b"\xff\x00"),
        ],
    )
    def test_cbor_rejects(self, data):
        with pytest.raises(InvalidDataError):
            CborSerializer().deserialize(data)

    def test_cause_is_chained(self):
        with pytest.raises(InvalidDataError) as exc_info:
            JsonSerializer().deserialize(b"\x01{broken}")
        assert exc_info.value.__cause__ is not None

    def test_deep_nesting_is_invalid_data(self):
        with pytest.raises(InvalidDataError) as exc_info:
            JsonSerializer(compress=False).deserialize(b"\x01" + DEEPLY_NESTED_TEXT.encode("utf-8"))
        assert isinstance(exc_info.value.__cause__, RecursionError)

        with pytest.raises(InvalidDataError):
            text_to_binary(DEEPLY_NESTED_TEXT)

    def test_validate_text(self):
        assert validate_text('  {"a": 1}\n') == '{"a": 1}'
        with pytest.raises(InvalidDataError):
            validate_text("")
        with pytest.raises(InvalidDataError):
            validate_text('"just a string"')

    def test_text_to_document_rejects_non_object(self):
        with pytest.raises(InvalidDataError):
            text_to_document("{}")

    def test_binary_to_text_round_trip(self):
        text = document_to_text(_codebase(), "cbor")
        assert json.loads(binary_to_text(text_to_binary(text))) == json.loads(text)


class TestFiles:
    """save() and load()."""

    def test_save_creates_parent_directories(self, tmp_path):
        target = tmp_path / "deep" / "nested" / "index.bin"
        size = CborSerializer().save(_codebase(), target)
        assert target.exists()
        assert target.stat().st_size == size

    def test_save_leaves_no_temp_files(self, tmp_path):
        target = tmp_path / "index.json"
        JsonSerializer().save(_codebase(), target)
        assert [p.name for p in tmp_path.iterdir()] == ["index.json"]

    def test_save_overwrites(self, tmp_path):
        target = tmp_path / "index.json"
        target.write_text("old")
        JsonSerializer(compress=False).save(_codebase(), target)
        assert JsonSerializer(compress=False).load(target) == _codebase()

    def test_load_artifact_file(self, tmp_path):
        target = tmp_path / "index.cbor.gz"
        optimized = TokenOptimizer().optimize(_codebase())
        CborSerializer(compress=True).save(optimized, target)
        assert load_artifact_file(target) == optimized

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            JsonSerializer().load(tmp_path / "missing.json")

    def test_save_into_file_path_fails(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        with pytest.raises(OSError):
            JsonSerializer().save(_codebase(), blocker / "index.json")


class TestFactoryAndInfo:
    """serializer_for() and artifact_info()."""

    def test_serializer_for(self):
        assert isinstance(serializer_for("json"), JsonSerializer)
        assert isinstance(serializer_for("CBOR", compress=False), CborSerializer)
        assert serializer_for("json", compress=False, indent=False).indent is False

    def test_serializer_for_unknown(self):
        with pytest.raises(ValueError):
            serializer_for("xml")

    def test_artifact_info_codebase(self):
        data = JsonSerializer().serialize(_codebase())
        info = artifact_info(data)
        assert info["format"] == "json"
        assert info["compressed"] is True
        assert info["schema"] == "codebase"
        assert info["total_type_count"] == 2
        assert info["size_in_bytes"] == len(data)

    def test_artifact_info_optimized(self):
        optimized = TokenOptimizer().optimize(_codebase())
        info = artifact_info(CborSerializer(compress=False).serialize(optimized))
        assert info["schema"] == "optimized_index"
        assert info["file_count"] == 2
        assert info["type_count"] == 2
        assert info["string_count"] == len(optimized.string_table)

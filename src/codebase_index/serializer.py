# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Artifact serialization for codebase indexes.

This module persists a Codebase or an OptimizedCodebase and reads it back:
- IndexSerializer: Abstract interface shared by every format
- JsonSerializer: Human-readable, self-describing UTF-8 JSON text
- CborSerializer: Compact binary form (CBOR), always converted through the
  canonical JSON text so both formats describe identical content

Artifact layout:
    [marker byte][payload]

The marker is the format code (JSON 0x01, CBOR 0x02) OR'ed with 0x10 when the
payload is gzip-compressed. Artifacts written without a marker are still
accepted: the reader tries gzip first and falls back to the raw bytes.

Every decoding failure (gzip, UTF-8, JSON, CBOR, envelope shape) surfaces as
InvalidDataError with the original exception chained.
"""

import gzip
import json
import logging
import os
import tempfile
import zlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import cbor2

from codebase_index.models import Codebase
from codebase_index.token_optimizer import OptimizedCodebase

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"
GENERATOR = "codebase-index"

SCHEMA_CODEBASE = "codebase"
SCHEMA_OPTIMIZED = "optimized_index"

FORMAT_JSON = "json"
FORMAT_CBOR = "cbor"

MARKER_JSON = 0x01
MARKER_CBOR = 0x02
MARKER_COMPRESSED = 0x10
_FORMAT_MASK = 0x0F

_FORMAT_CODES = {FORMAT_JSON: MARKER_JSON, FORMAT_CBOR: MARKER_CBOR}
_FORMAT_NAMES = {code: name for name, code in _FORMAT_CODES.items()}

# Union of the document kinds an artifact can hold
IndexDocument = Union[Codebase, OptimizedCodebase]


class InvalidDataError(Exception):
    """Artifact bytes could not be decoded into an index document."""

    pass


def _schema_of(document: IndexDocument) -> str:
    if isinstance(document, OptimizedCodebase):
        return SCHEMA_OPTIMIZED
    if isinstance(document, Codebase):
        return SCHEMA_CODEBASE
    raise TypeError(f"Cannot serialize object of type {type(document).__name__}")


def document_to_text(document: IndexDocument, format_name: str = FORMAT_JSON, indent: bool = False) -> str:
    """Render a document as canonical envelope JSON text."""
    envelope = {
        "schema": _schema_of(document),
        "version": SCHEMA_VERSION,
        "generator": GENERATOR,
        "format": format_name,
        "data": document.to_dict(),
    }
    if indent:
        return json.dumps(envelope, indent=2, ensure_ascii=False)
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False)


def validate_text(text: Optional[str]) -> str:
    """Check the decoded text looks like a JSON object.

    Returns:
        The text with surrounding whitespace removed.

    Raises:
        InvalidDataError: If the text is empty or not brace-delimited.
    """
    if text is None:
        raise InvalidDataError("Decoded index text is empty")
    stripped = text.strip()
    if not stripped:
        raise InvalidDataError("Decoded index text is empty")
    if not (stripped.startswith("{") and stripped.endswith("}")):
        raise InvalidDataError("Decoded index text is not a JSON object")
    return stripped


def text_to_document(text: str) -> IndexDocument:
    """Parse envelope JSON text back into a document.

    Raises:
        InvalidDataError: If the text is malformed or the envelope is not
            recognised.
    """
    stripped = validate_text(text)
    try:
        envelope = json.loads(stripped)
    except (json.JSONDecodeError, RecursionError) as e:
        raise InvalidDataError(f"Index text is not valid JSON: {type(e).__name__}: {e}") from e

    if not isinstance(envelope, dict) or "data" not in envelope:
        raise InvalidDataError("Index envelope is missing its data section")

    version = str(envelope.get("version", ""))
    if version.split(".")[0] != SCHEMA_VERSION.split(".")[0]:
        raise InvalidDataError(f"Unsupported index version: {version!r}")

    schema = envelope.get("schema")
    try:
        if schema == SCHEMA_CODEBASE:
            return Codebase.from_dict(envelope["data"])
        if schema == SCHEMA_OPTIMIZED:
            return OptimizedCodebase.from_dict(envelope["data"])
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise InvalidDataError(f"Index data does not match schema '{schema}': {e}") from e
    raise InvalidDataError(f"Unknown index schema: {schema!r}")


def text_to_binary(text: str) -> bytes:
    """Convert canonical JSON text into its CBOR encoding."""
    try:
        value = json.loads(validate_text(text))
    except (json.JSONDecodeError, RecursionError) as e:
        raise InvalidDataError(f"Index text is not valid JSON: {type(e).__name__}: {e}") from e
    return cbor2.dumps(value)


def binary_to_text(data: bytes) -> str:
    """Convert a CBOR encoding back into canonical JSON text."""
    try:
        value = cbor2.loads(data)
    except (cbor2.CBORDecodeError, ValueError, TypeError, RecursionError) as e:
        raise InvalidDataError(f"Index payload is not valid CBOR: {e}") from e
    if not isinstance(value, dict):
        raise InvalidDataError("CBOR payload does not hold a map")
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError, RecursionError) as e:
        raise InvalidDataError(f"CBOR payload holds non-JSON values: {e}") from e


def _gunzip(data: bytes) -> bytes:
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise InvalidDataError(f"Compressed payload is corrupt: {e}") from e


def _sniff_payload(data: bytes) -> bytes:
    """Decompress unmarked data when it is gzip, else return it unchanged."""
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error):
        return data


def split_marker(data: bytes) -> Tuple[Optional[str], bool, bytes]:
    """Split an artifact into (format name, compressed, payload).

    For unmarked legacy artifacts the format name is None and the payload is
    already decompressed when it was gzip data.
    """
    if not data:
        raise InvalidDataError("Artifact is empty")

    marker = data[0]
    format_name = _FORMAT_NAMES.get(marker & _FORMAT_MASK)
    if format_name is not None and marker & ~(_FORMAT_MASK | MARKER_COMPRESSED) == 0:
        compressed = bool(marker & MARKER_COMPRESSED)
        payload = data[1:]
        if compressed:
            payload = _gunzip(payload)
        return format_name, compressed, payload

    logger.debug("Artifact has no format marker, sniffing legacy layout")
    return None, False, _sniff_payload(data)


class IndexSerializer(ABC):
    """Abstract artifact format.

    Subclasses implement the payload encoding; marker handling, compression
    and envelope validation live here.
    """

    def __init__(self, compress: bool = True) -> None:
        self.compress = compress

    @property
    @abstractmethod
    def format_name(self) -> str:
        """Format identifier written into the envelope."""
        pass

    @abstractmethod
    def _encode(self, document: IndexDocument) -> bytes:
        pass

    @abstractmethod
    def _decode(self, payload: bytes) -> str:
        pass

    @property
    def marker(self) -> int:
        code = _FORMAT_CODES[self.format_name]
        return code | MARKER_COMPRESSED if self.compress else code

    def to_text(self, document: IndexDocument) -> str:
        """Canonical text form of a document, as embedded in this format."""
        return document_to_text(document, self.format_name)

    def serialize(self, document: IndexDocument) -> bytes:
        """Encode a document into artifact bytes.

        Raises:
            ValueError: If document is None.
            TypeError: If document is not a Codebase or OptimizedCodebase.
        """
        if document is None:
            raise ValueError("document must not be None")

        payload = self._encode(document)
        if self.compress:
            payload = gzip.compress(payload, mtime=0)
        return bytes([self.marker]) + payload

    def deserialize(self, data: bytes) -> IndexDocument:
        """Decode artifact bytes into a fresh document.

        Raises:
            InvalidDataError: If the bytes are not a valid artifact of this
                format.
        """
        format_name, _, payload = split_marker(data)
        if format_name is not None and format_name != self.format_name:
            raise InvalidDataError(
                f"Artifact is {format_name} data, expected {self.format_name}"
            )
        return text_to_document(self._decode(payload))

    def save(self, document: IndexDocument, path: Union[str, Path]) -> int:
        """Write a document to disk atomically.

        Missing parent directories are created. The artifact appears under its
        final name only once fully written.

        Returns:
            Number of bytes written.

        Raises:
            OSError: If the directory or file cannot be created.
        """
        target = Path(path)
        data = self.serialize(document)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, target)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.info(f"Wrote {len(data)} byte {self.format_name} artifact to {target}")
        return len(data)

    def load(self, path: Union[str, Path]) -> IndexDocument:
        """Read and decode an artifact from disk.

        Raises:
            OSError: If the file cannot be read.
            InvalidDataError: If its contents are not a valid artifact.
        """
        return self.deserialize(Path(path).read_bytes())


class JsonSerializer(IndexSerializer):
    """UTF-8 JSON text artifacts.

    Indentation is applied only to uncompressed output; compressed artifacts
    are written compact.
    """

    def __init__(self, compress: bool = True, indent: bool = True) -> None:
        super().__init__(compress=compress)
        self.indent = indent and not compress

    @property
    def format_name(self) -> str:
        return FORMAT_JSON

    def _encode(self, document: IndexDocument) -> bytes:
        return document_to_text(document, FORMAT_JSON, indent=self.indent).encode("utf-8")

    def _decode(self, payload: bytes) -> str:
        try:
            return payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidDataError(f"Index payload is not valid UTF-8: {e}") from e


class CborSerializer(IndexSerializer):
    """CBOR binary artifacts, converted through the canonical JSON text."""

    @property
    def format_name(self) -> str:
        return FORMAT_CBOR

    def _encode(self, document: IndexDocument) -> bytes:
        return text_to_binary(document_to_text(document, FORMAT_CBOR))

    def _decode(self, payload: bytes) -> str:
        return binary_to_text(payload)


def serializer_for(format_name: str, compress: bool = True, indent: bool = True) -> IndexSerializer:
    """Build a serializer by format name ("json" or "cbor").

    Raises:
        ValueError: If the format name is unknown.
    """
    name = format_name.lower()
    if name == FORMAT_JSON:
        return JsonSerializer(compress=compress, indent=indent)
    if name == FORMAT_CBOR:
        return CborSerializer(compress=compress)
    raise ValueError(f"Unknown artifact format: {format_name!r} (expected 'json' or 'cbor')")


def detect_format(data: bytes) -> Tuple[str, bool]:
    """Identify the format of artifact bytes.

    Returns:
        (format name, compressed). For legacy artifacts, text starting with
        '{' is JSON and anything else is taken as CBOR.

    Raises:
        InvalidDataError: If data is empty.
    """
    format_name, compressed, payload = split_marker(data)
    if format_name is not None:
        return format_name, compressed

    compressed = payload is not data
    if payload.lstrip()[:1] == b"{":
        return FORMAT_JSON, compressed
    return FORMAT_CBOR, compressed


def load_artifact(data: bytes) -> IndexDocument:
    """Decode artifact bytes of any supported format."""
    format_name, compressed = detect_format(data)
    return serializer_for(format_name, compress=compressed).deserialize(data)


def load_artifact_file(path: Union[str, Path]) -> IndexDocument:
    """Read and decode an artifact file of any supported format.

    Raises:
        OSError: If the file cannot be read.
        InvalidDataError: If its contents are not a valid artifact.
    """
    return load_artifact(Path(path).read_bytes())


def artifact_info(data: bytes) -> Dict[str, Any]:
    """Describe an artifact without exposing its full contents."""
    format_name, compressed = detect_format(data)
    document = serializer_for(format_name, compress=compressed).deserialize(data)
    info: Dict[str, Any] = {
        "format": format_name,
        "compressed": compressed,
        "size_in_bytes": len(data),
        "schema": _schema_of(document),
    }
    if isinstance(document, Codebase):
        info.update(document.summary())
    else:
        info.update(
            {
                "file_count": document.file_count,
                "string_count": len(document.string_table),
                "failed_items": document.failed_items,
                "type_count": sum(len(f.types) for f in document.files),
            }
        )
    return info

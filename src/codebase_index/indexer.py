# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Indexing orchestrator.

Drives one indexing run over a directory tree:

    idle -> scanning -> parsing -> optimizing -> serializing -> done

1. Scanning: FileScanner enumerates eligible files in sorted order
2. Parsing: each file is read and handed to the parser registered for its
   extension, optionally on a bounded thread pool
3. Aggregation: parsed files are assembled into a Codebase on the calling
   thread, in enumeration order
4. Optimizing: TokenOptimizer in "in_place" or "indexed" mode
5. Serializing: the configured IndexSerializer writes the artifact

Error Recovery:
- Root missing or unreadable: state "failed", ScanError raised
- Unreadable subdirectory, unreadable/oversized file, parse failure: logged,
  reported as an IndexingIssue, the file is excluded and the run continues
- Artifact cannot be encoded or written: ArtifactWriteError raised, indexer
  back to idle

Cancellation is cooperative through a threading.Event checked between files
and between stages. A cancelled run produces no codebase and no artifact.
"""

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from codebase_index.config import Config
from codebase_index.file_scanner import FileScanner, IndexingError, ScanError
from codebase_index.models import Codebase, SourceFile, utc_now
from codebase_index.parsers.base import ParseError
from codebase_index.parsers.registry import ParserRegistry, default_registry
from codebase_index.serializer import IndexSerializer, serializer_for
from codebase_index.token_counter import TokenCounter
from codebase_index.token_optimizer import OptimizedCodebase, TokenOptimizer

logger = logging.getLogger(__name__)

# Callback signature: (processed_count, total_count) -> None
ProgressCallback = Callable[[int, int], None]

__all__ = [
    "ArtifactWriteError",
    "CodebaseIndexer",
    "IndexingError",
    "IndexingIssue",
    "IndexingMetadata",
    "IndexingResult",
    "IndexingState",
    "IssueKind",
    "ScanError",
]


class ArtifactWriteError(IndexingError):
    """The output artifact could not be encoded or written."""

    pass


class IndexingState:
    """Lifecycle states of an indexing run."""

    IDLE = "idle"
    SCANNING = "scanning"
    PARSING = "parsing"
    OPTIMIZING = "optimizing"
    SERIALIZING = "serializing"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"

    TERMINAL = (DONE, CANCELLED, FAILED)


_TRANSITIONS = {
    IndexingState.IDLE: {IndexingState.SCANNING},
    IndexingState.SCANNING: {
        IndexingState.PARSING,
        IndexingState.FAILED,
        IndexingState.CANCELLED,
        IndexingState.IDLE,
    },
    IndexingState.PARSING: {
        IndexingState.OPTIMIZING,
        IndexingState.DONE,
        IndexingState.CANCELLED,
        IndexingState.IDLE,
    },
    IndexingState.OPTIMIZING: {
        IndexingState.SERIALIZING,
        IndexingState.CANCELLED,
        IndexingState.IDLE,
    },
    IndexingState.SERIALIZING: {
        IndexingState.DONE,
        IndexingState.CANCELLED,
        IndexingState.IDLE,
    },
    IndexingState.DONE: {IndexingState.SCANNING, IndexingState.IDLE},
    IndexingState.CANCELLED: {IndexingState.SCANNING, IndexingState.IDLE},
    IndexingState.FAILED: {IndexingState.SCANNING, IndexingState.IDLE},
}


class IssueKind:
    """Kinds of recoverable per-item failures."""

    DIRECTORY_ACCESS = "directory_access"
    FILE_READ = "file_read"
    FILE_TOO_LARGE = "file_too_large"
    PARSE_FAILURE = "parse_failure"


@dataclass
class IndexingIssue:
    """A file or directory left out of the index, and why."""

    kind: str  # IssueKind value
    path: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "path": self.path, "message": self.message}


@dataclass
class IndexingMetadata:
    """Statistics about a finished run.

    compression_ratio is canonical text size divided by artifact size, so
    values above 1.0 mean the artifact is smaller than its text form.
    """

    duration_ms: int = 0
    files_processed: int = 0
    token_count: int = 0
    size_in_bytes: int = 0
    compression_ratio: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration_ms": self.duration_ms,
            "files_processed": self.files_processed,
            "token_count": self.token_count,
            "size_in_bytes": self.size_in_bytes,
            "compression_ratio": self.compression_ratio,
        }


@dataclass
class IndexingResult:
    """Outcome of run() or build_codebase()."""

    state: str
    codebase: Optional[Codebase] = None
    optimized: Optional[OptimizedCodebase] = None
    output_path: Optional[str] = None
    issues: List[IndexingIssue] = field(default_factory=list)
    metadata: IndexingMetadata = field(default_factory=IndexingMetadata)

    @property
    def succeeded(self) -> bool:
        return self.state == IndexingState.DONE

    def to_dict(self) -> Dict[str, Any]:
        """Summary suitable for JSON output (no entity graph)."""
        result: Dict[str, Any] = {
            "state": self.state,
            "output_path": self.output_path,
            "issues": [issue.to_dict() for issue in self.issues],
            "metadata": self.metadata.to_dict(),
        }
        if self.codebase is not None:
            result["summary"] = self.codebase.summary()
        return result


# Outcome of one file: parsed file or issue, never both
_FileOutcome = Tuple[Optional[SourceFile], Optional[IndexingIssue]]


class CodebaseIndexer:
    """Runs indexing passes over one root directory.

    Thread Safety:
    - One run at a time per instance; a second concurrent call raises
      RuntimeError
    - Parser workers only read their own file and return values; the
      Codebase is assembled on the calling thread

    Usage:
        indexer = CodebaseIndexer("/path/to/project", default_registry())
        result = indexer.run("/path/to/index.json.gz")
    """

    def __init__(
        self,
        root_directory: Union[str, Path],
        parser_registry: Optional[ParserRegistry] = None,
        serializer: Optional[IndexSerializer] = None,
        optimizer: Optional[TokenOptimizer] = None,
        config: Optional[Config] = None,
        token_counter: Optional[TokenCounter] = None,
    ):
        """Initialize CodebaseIndexer.

        Args:
            root_directory: Directory to index.
            parser_registry: Parsers to dispatch to. Defaults to the bundled
                parsers configured from config.
            serializer: Artifact format. Defaults to the one named by config.
            optimizer: Token optimizer. A fresh one if None.
            config: Run configuration. Defaults to .codebase_index.yml in the
                working directory.
            token_counter: Token counter for run metadata. Built from config
                if None.
        """
        self.root_directory = Path(root_directory)
        self.config = config if config is not None else Config()
        self.parser_registry = (
            parser_registry
            if parser_registry is not None
            else default_registry(
                include_private_members=self.config.include_private_members,
                include_protected_members=self.config.include_protected_members,
            )
        )
        self.serializer = (
            serializer
            if serializer is not None
            else serializer_for(
                self.config.output_format,
                compress=self.config.compress_output,
                indent=self.config.indent_json,
            )
        )
        self.optimizer = optimizer if optimizer is not None else TokenOptimizer()
        self.token_counter = (
            token_counter
            if token_counter is not None
            else TokenCounter(self.config.token_encoding if self.config.count_tokens else None)
        )

        self._state = IndexingState.IDLE
        self._run_lock = threading.Lock()

    @property
    def state(self) -> str:
        return self._state

    def _transition(self, new_state: str) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid indexing state transition: {self._state} -> {new_state}")
        logger.debug(f"Indexing state {self._state} -> {new_state}")
        self._state = new_state

    def _acquire(self) -> None:
        if not self._run_lock.acquire(blocking=False):
            raise RuntimeError("An indexing run is already in progress on this indexer")

    def _release(self) -> None:
        # Any stage that raised (other than a scan failure) leaves the
        # indexer ready for the next run
        if self._state not in IndexingState.TERMINAL and self._state != IndexingState.IDLE:
            self._transition(IndexingState.IDLE)
        self._run_lock.release()

    def run(
        self,
        output_path: Union[str, Path],
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> IndexingResult:
        """Index the root directory and write the artifact.

        Args:
            output_path: Artifact destination. Missing parent directories are
                created.
            cancel_event: Set to request cancellation.
            progress_callback: Called with (processed, total) after each file.

        Returns:
            IndexingResult in state "done" or "cancelled".

        Raises:
            ScanError: If the root directory cannot be enumerated.
            ArtifactWriteError: If the artifact cannot be encoded or written.
            RuntimeError: If another run is in progress on this instance.
        """
        self._acquire()
        try:
            start = time.perf_counter()
            result = self._build(cancel_event, progress_callback)
            if result.state == IndexingState.CANCELLED:
                return result

            codebase = result.codebase
            assert codebase is not None

            self._transition(IndexingState.OPTIMIZING)
            document: Union[Codebase, OptimizedCodebase]
            if self.config.optimization_mode == "indexed":
                result.optimized = self.optimizer.optimize(codebase)
                document = result.optimized
            else:
                changed = self.optimizer.optimize_in_place(codebase)
                logger.info(f"Normalized {changed} documentation fields")
                document = codebase

            if self._cancel_requested(cancel_event):
                return self._cancelled(result.issues)

            self._transition(IndexingState.SERIALIZING)
            target = Path(output_path)
            try:
                text = self.serializer.to_text(document)
                text_size = len(text.encode("utf-8"))
                size = self.serializer.save(document, target)
            except OSError as e:
                logger.error(f"Failed to write index artifact {target}: {e}")
                self._transition(IndexingState.IDLE)
                raise ArtifactWriteError(
                    f"Cannot write index artifact {target}: {e}", path=str(target)
                ) from e
            except (UnicodeError, ValueError) as e:
                # Text a parser plugin produced that the artifact format cannot encode
                logger.error(f"Failed to encode index artifact {target}: {e}")
                self._transition(IndexingState.IDLE)
                raise ArtifactWriteError(
                    f"Cannot encode index artifact {target}: {e}", path=str(target)
                ) from e

            result.output_path = str(target)
            result.metadata = IndexingMetadata(
                duration_ms=int((time.perf_counter() - start) * 1000),
                files_processed=codebase.total_file_count,
                token_count=self.token_counter.count(text),
                size_in_bytes=size,
                compression_ratio=round(text_size / size, 3) if size else 0.0,
            )
            self._transition(IndexingState.DONE)
            result.state = IndexingState.DONE

            logger.info(
                f"Indexed {codebase.total_file_count} files ({codebase.total_type_count} types) "
                f"into {target} in {result.metadata.duration_ms} ms, "
                f"{len(result.issues)} issues",
                extra={"extra_fields": result.metadata.to_dict()},
            )
            return result
        finally:
            self._release()

    def build_codebase(
        self,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> IndexingResult:
        """Scan and parse without optimizing or writing anything.

        Returns:
            IndexingResult in state "done" (with codebase) or "cancelled".

        Raises:
            ScanError: If the root directory cannot be enumerated.
            RuntimeError: If another run is in progress on this instance.
        """
        self._acquire()
        try:
            start = time.perf_counter()
            result = self._build(cancel_event, progress_callback)
            if result.state == IndexingState.CANCELLED:
                return result

            self._transition(IndexingState.DONE)
            result.state = IndexingState.DONE
            assert result.codebase is not None
            result.metadata.duration_ms = int((time.perf_counter() - start) * 1000)
            result.metadata.files_processed = result.codebase.total_file_count
            return result
        finally:
            self._release()

    def _build(
        self,
        cancel_event: Optional[threading.Event],
        progress_callback: Optional[ProgressCallback],
    ) -> IndexingResult:
        """Scan, parse and aggregate. Leaves the state at "parsing" on success."""
        self._transition(IndexingState.SCANNING)
        logger.info(f"Scanning {self.root_directory}")

        scanner = FileScanner(
            str(self.root_directory),
            supported_extensions=self.parser_registry.supported_extensions(),
            ignore_patterns=self.config.ignore_patterns,
        )
        try:
            scan = scanner.scan()
        except ScanError as e:
            logger.error(f"Scan failed: {e}")
            self._transition(IndexingState.FAILED)
            raise

        issues = [
            IndexingIssue(IssueKind.DIRECTORY_ACCESS, path, reason)
            for path, reason in scan.skipped_directories
        ]

        if self._cancel_requested(cancel_event):
            return self._cancelled(issues)

        self._transition(IndexingState.PARSING)
        outcomes = self._parse_files(scan.files, cancel_event, progress_callback)
        if outcomes is None:
            return self._cancelled(issues)

        files: List[SourceFile] = []
        for source_file, issue in outcomes:
            if issue is not None:
                issues.append(issue)
            elif source_file is not None:
                files.append(source_file)

        codebase = Codebase(
            root_directory=str(scanner.root_directory),
            created_at=utc_now(),
            files=files,
        )
        logger.info(
            f"Parsed {len(files)} of {len(scan.files)} files "
            f"({codebase.total_type_count} types, {len(issues)} issues)"
        )

        if self._cancel_requested(cancel_event):
            return self._cancelled(issues)

        return IndexingResult(state=self._state, codebase=codebase, issues=issues)

    def _parse_files(
        self,
        paths: List[Path],
        cancel_event: Optional[threading.Event],
        progress_callback: Optional[ProgressCallback],
    ) -> Optional[List[_FileOutcome]]:
        """Parse every path. Returns outcomes in path order, or None if cancelled."""
        total = len(paths)
        workers = min(self.config.max_workers, total)

        if workers <= 1:
            sequential: List[_FileOutcome] = []
            for index, path in enumerate(paths):
                if self._cancel_requested(cancel_event):
                    return None
                sequential.append(self._parse_one(path))
                if progress_callback is not None:
                    progress_callback(index + 1, total)
            if self._cancel_requested(cancel_event):
                return None
            return sequential

        outcomes: List[Optional[_FileOutcome]] = [None] * total
        processed = 0
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="codebase-index-parser"
        ) as executor:
            futures = {
                executor.submit(self._parse_one, path, cancel_event): index
                for index, path in enumerate(paths)
            }
            for future in concurrent.futures.as_completed(futures):
                outcomes[futures[future]] = future.result()
                processed += 1
                if progress_callback is not None:
                    progress_callback(processed, total)
                if self._cancel_requested(cancel_event):
                    for pending in futures:
                        pending.cancel()
                    return None

        return [outcome for outcome in outcomes if outcome is not None]

    def _parse_one(self, path: Path, cancel_event: Optional[threading.Event] = None) -> _FileOutcome:
        """Read and parse one file. Never raises for per-file failures."""
        if self._cancel_requested(cancel_event):
            return None, None

        file_path = str(path)
        parser = self.parser_registry.get_parser(path)
        if parser is None:
            return None, IndexingIssue(IssueKind.PARSE_FAILURE, file_path, "No parser for file extension")

        try:
            stat = path.stat()
        except OSError as e:
            logger.warning(f"Cannot access {file_path}: {e}")
            return None, IndexingIssue(IssueKind.FILE_READ, file_path, str(e))

        if stat.st_size > self.config.max_file_size_bytes:
            message = f"{stat.st_size} bytes exceeds limit ({self.config.max_file_size_bytes})"
            logger.warning(f"Skipping {file_path}: {message}")
            return None, IndexingIssue(IssueKind.FILE_TOO_LARGE, file_path, message)

        try:
            source = self._read_source(path)
        except OSError as e:
            logger.warning(f"Cannot read {file_path}: {e}")
            return None, IndexingIssue(IssueKind.FILE_READ, file_path, str(e))

        try:
            source_file = parser.parse_file(file_path, source, str(self.root_directory))
        except ParseError as e:
            logger.warning(f"Skipping {file_path}: {e}")
            return None, IndexingIssue(IssueKind.PARSE_FAILURE, file_path, str(e))
        except Exception as e:
            # Parser plugins are third-party code; one broken file must not end the run
            logger.error(f"Parser '{parser.name()}' failed on {file_path}: {e}", exc_info=True)
            return None, IndexingIssue(IssueKind.PARSE_FAILURE, file_path, f"{type(e).__name__}: {e}")

        source_file.size_bytes = stat.st_size
        source_file.last_modified = datetime.fromtimestamp(stat.st_mtime, timezone.utc)
        logger.debug(f"Parsed {file_path}: {len(source_file.types)} types")
        return source_file, None

    @staticmethod
    def _read_source(path: Path) -> str:
        """Read text as UTF-8, falling back to latin-1 (accepts all byte values)."""
        data = path.read_bytes()
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug(f"{path} is not valid UTF-8, decoding as latin-1")
            return data.decode("latin-1")

    @staticmethod
    def _cancel_requested(cancel_event: Optional[threading.Event]) -> bool:
        return cancel_event is not None and cancel_event.is_set()

    def _cancelled(self, issues: List[IndexingIssue]) -> IndexingResult:
        logger.info(f"Indexing of {self.root_directory} cancelled during {self._state}")
        self._transition(IndexingState.CANCELLED)
        return IndexingResult(state=IndexingState.CANCELLED, issues=issues)

# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for the indexing orchestrator.

Test coverage:
- Full runs in both optimization modes, both formats
- Partial failure: unreadable directory and parse failure reported as issues
- Oversized and undecodable files
- Fatal failures: missing root (failed state), unwritable output (idle)
- Cooperative cancellation and progress reporting
- One run at a time per instance
"""

import os
import threading
from pathlib import Path
from typing import List

import pytest

from codebase_index.config import Config
from codebase_index.indexer import (
    ArtifactWriteError,
    CodebaseIndexer,
    IndexingState,
    IssueKind,
    ScanError,
)
from codebase_index.models import Codebase, SourceFile
from codebase_index.parsers import LanguageParser, ParserRegistry, PythonParser
from codebase_index.serializer import CborSerializer, JsonSerializer, load_artifact_file
from codebase_index.token_counter import TokenCounter
from codebase_index.token_optimizer import OptimizedCodebase


def _config(tmp_path: Path, **overrides) -> Config:
    values = {"count_tokens": False}
    values.update(overrides)
    return Config(config_path=tmp_path / "no-config.yml", overrides=values)


def _registry() -> ParserRegistry:
    registry = ParserRegistry()
    registry.register(PythonParser())
    return registry


def _indexer(root: Path, tmp_path: Path, **overrides) -> CodebaseIndexer:
    return CodebaseIndexer(
        root,
        _registry(),
        config=_config(tmp_path, **overrides),
        token_counter=TokenCounter(encoding_name=None),
    )


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    _write(
        root / "app" / "models.py",
        '''
class Order:
    """An   order.

    Placed by a customer."""

    total: float

    def add(self, sku: str, quantity: int = 1) -> None:
        """Add a line."""
''',
    )
    _write(root / "app" / "service.py", "from .models import Order\n\nclass Service(Order):\n    pass\n")
    _write(root / "main.py", "def main():\n    pass\n")
    _write(root / "README.md", "# not parsed\n")
    return root


class TestRun:
    """Tests for complete runs."""

    def test_in_place_json_run(self, project: Path, tmp_path: Path):
        output = tmp_path / "out" / "index.json"
        indexer = _indexer(project, tmp_path, compress_output=False)

        result = indexer.run(output)

        assert result.state == IndexingState.DONE
        assert indexer.state == IndexingState.DONE
        assert result.output_path == str(output)
        assert result.issues == []
        assert result.optimized is None
        assert [f.relative_path for f in result.codebase.files] == [
            "app/models.py",
            "app/service.py",
            "main.py",
        ]
        order = result.codebase.find_type("app.models.Order")
        assert order is not None
        assert order.documentation == "An order. Placed by a customer."

        loaded = load_artifact_file(output)
        assert isinstance(loaded, Codebase)
        assert loaded == result.codebase

    def test_indexed_cbor_run(self, project: Path, tmp_path: Path):
        output = tmp_path / "index.cbor"
        indexer = _indexer(project, tmp_path, optimization_mode="indexed", output_format="cbor")

        result = indexer.run(output)

        assert result.state == IndexingState.DONE
        assert isinstance(result.optimized, OptimizedCodebase)
        assert isinstance(indexer.serializer, CborSerializer)
        loaded = load_artifact_file(output)
        assert loaded == result.optimized
        assert "pub None add(str sku,int quantity=1)" in loaded.signatures()

    def test_metadata(self, project: Path, tmp_path: Path):
        output = tmp_path / "index.json.gz"
        result = _indexer(project, tmp_path).run(output)

        meta = result.metadata
        assert meta.files_processed == 3
        assert meta.size_in_bytes == output.stat().st_size
        assert meta.token_count > 0
        assert meta.compression_ratio > 1.0
        assert meta.duration_ms >= 0

    def test_file_stat_recorded(self, project: Path, tmp_path: Path):
        result = _indexer(project, tmp_path).build_codebase()
        main = next(f for f in result.codebase.files if f.relative_path == "main.py")
        assert main.size_bytes == (project / "main.py").stat().st_size
        assert main.last_modified.tzinfo is not None

    def test_identical_runs_identical_content(self, project: Path, tmp_path: Path):
        first = _indexer(project, tmp_path, max_workers=4).build_codebase().codebase
        second = _indexer(project, tmp_path, max_workers=1).build_codebase().codebase
        assert [f.to_dict() for f in first.files] == [f.to_dict() for f in second.files]

    def test_default_serializer_from_config(self, project: Path, tmp_path: Path):
        indexer = _indexer(project, tmp_path, output_format="json", compress_output=False, indent_json=False)
        assert isinstance(indexer.serializer, JsonSerializer)
        assert indexer.serializer.compress is False
        assert indexer.serializer.indent is False

    def test_empty_directory(self, tmp_path: Path):
        root = tmp_path / "empty"
        root.mkdir()
        output = tmp_path / "index.json"
        result = _indexer(root, tmp_path).run(output)
        assert result.state == IndexingState.DONE
        assert result.codebase.total_file_count == 0
        assert output.exists()

    def test_can_run_again(self, project: Path, tmp_path: Path):
        indexer = _indexer(project, tmp_path)
        indexer.run(tmp_path / "a.json")
        result = indexer.run(tmp_path / "b.json")
        assert result.state == IndexingState.DONE


class TestPartialFailure:
    """Per-item failures are reported, never fatal."""

    def test_unreadable_directory_and_parse_failure(self, tmp_path: Path, monkeypatch):
        root = tmp_path / "mixed"
        _write(root / "good.py", "class Good:\n    pass\n")
        _write(root / "broken.py", "class Broken(:\n")
        _write(root / "locked" / "hidden.py", "class Hidden:\n    pass\n")

        real_scandir = os.scandir
        locked = (root / "locked").resolve()

        def failing_scandir(path):
            if Path(path) == locked:
                raise PermissionError(13, "Permission denied", str(path))
            return real_scandir(path)

        monkeypatch.setattr("codebase_index.file_scanner.os.scandir", failing_scandir)
        output = tmp_path / "index.json"

        result = _indexer(root, tmp_path).run(output)

        assert result.state == IndexingState.DONE
        assert [f.relative_path for f in result.codebase.files] == ["good.py"]
        assert len(result.issues) == 2
        kinds = {issue.kind: issue for issue in result.issues}
        assert set(kinds) == {IssueKind.DIRECTORY_ACCESS, IssueKind.PARSE_FAILURE}
        assert kinds[IssueKind.PARSE_FAILURE].path.endswith("broken.py")
        assert kinds[IssueKind.DIRECTORY_ACCESS].path == str(locked)
        assert output.exists()

    def test_oversized_file(self, project: Path, tmp_path: Path):
        _write(project / "big.py", "x = 1\n" * 100)
        result = _indexer(project, tmp_path, max_file_size_bytes=400).build_codebase()
        too_large = [i for i in result.issues if i.kind == IssueKind.FILE_TOO_LARGE]
        assert len(too_large) == 1
        assert too_large[0].path.endswith("big.py")
        assert "big.py" not in [f.relative_path for f in result.codebase.files]

    def test_latin1_fallback(self, tmp_path: Path):
        root = tmp_path / "legacy"
        root.mkdir()
        (root / "old.py").write_bytes(b'class Old:\n    """Caf\xe9."""\n')
        result = _indexer(root, tmp_path).build_codebase()
        assert result.issues == []
        assert result.codebase.files[0].types[0].documentation == "Café."

    @pytest.mark.parametrize(
        "mode, output_format",
        [("in_place", "json"), ("in_place", "cbor"), ("indexed", "json"), ("indexed", "cbor")],
    )
    def test_lone_surrogate_in_docstring(self, tmp_path: Path, mode: str, output_format: str):
        root = tmp_path / "escapes"
        _write(root / "odd.py", 'class A:\n    """bad \\ud800 doc"""\n')
        output = tmp_path / "index.out"

        result = _indexer(
            root, tmp_path, max_workers=1, optimization_mode=mode, output_format=output_format
        ).run(output)

        assert result.state == IndexingState.DONE
        assert result.issues == []
        assert result.codebase.files[0].types[0].documentation == "bad ? doc"
        assert load_artifact_file(output) is not None

    def test_parser_crash_is_contained(self, project: Path, tmp_path: Path):
        class CrashingParser(PythonParser):
            def parse_file(self, file_path, source, root_directory):
                if file_path.endswith("main.py"):
                    raise RuntimeError("boom")
                return super().parse_file(file_path, source, root_directory)

        registry = ParserRegistry()
        registry.register(CrashingParser())
        indexer = CodebaseIndexer(
            project,
            registry,
            config=_config(tmp_path),
            token_counter=TokenCounter(encoding_name=None),
        )

        result = indexer.build_codebase()

        assert result.codebase.total_file_count == 2
        assert len(result.issues) == 1
        assert result.issues[0].kind == IssueKind.PARSE_FAILURE
        assert "boom" in result.issues[0].message


class TestFatalFailures:
    """Failures that end the run."""

    def test_missing_root(self, tmp_path: Path):
        indexer = _indexer(tmp_path / "missing", tmp_path)
        with pytest.raises(ScanError):
            indexer.run(tmp_path / "index.json")
        assert indexer.state == IndexingState.FAILED
        assert not (tmp_path / "index.json").exists()

    def test_unwritable_output(self, project: Path, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        indexer = _indexer(project, tmp_path)

        with pytest.raises(ArtifactWriteError) as exc_info:
            indexer.run(blocker / "index.json")

        assert indexer.state == IndexingState.IDLE
        assert isinstance(exc_info.value.__cause__, OSError)
        assert indexer.run(tmp_path / "index.json").state == IndexingState.DONE

    def test_unencodable_text_from_parser(self, project: Path, tmp_path: Path):
        class SurrogateParser(PythonParser):
            def parse_file(self, file_path, source, root_directory):
                source_file = super().parse_file(file_path, source, root_directory)
                for type_def in source_file.types:
                    type_def.name += "\udc80"
                return source_file

        registry = ParserRegistry()
        registry.register(SurrogateParser())
        indexer = CodebaseIndexer(
            project,
            registry,
            config=_config(tmp_path, max_workers=1),
            token_counter=TokenCounter(encoding_name=None),
        )
        output = tmp_path / "index.json"

        with pytest.raises(ArtifactWriteError) as exc_info:
            indexer.run(output)

        assert isinstance(exc_info.value.__cause__, UnicodeEncodeError)
        assert indexer.state == IndexingState.IDLE
        assert not output.exists()


class _CountingParser(LanguageParser):
    """Parser producing an empty SourceFile, counting calls."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    def name(self) -> str:
        return "CountingParser"

    def language(self) -> str:
        return "text"

    def supported_extensions(self) -> List[str]:
        return [".txt"]

    def parse_file(self, file_path: str, source: str, root_directory: str) -> SourceFile:
        self.calls.append(file_path)
        return SourceFile(absolute_path=file_path, relative_path=Path(file_path).name, language="text")


class TestCancellationAndProgress:
    """Cooperative cancellation and progress callbacks."""

    @pytest.fixture
    def five_files(self, tmp_path: Path) -> Path:
        root = tmp_path / "five"
        for index in range(5):
            _write(root / f"file{index}.txt", "content")
        return root

    def test_cancel_after_two_files(self, five_files: Path, tmp_path: Path):
        parser = _CountingParser()
        registry = ParserRegistry()
        registry.register(parser)
        indexer = CodebaseIndexer(
            five_files,
            registry,
            config=_config(tmp_path, max_workers=1),
            token_counter=TokenCounter(encoding_name=None),
        )
        cancel = threading.Event()

        def progress(processed: int, total: int) -> None:
            if processed == 2:
                cancel.set()

        output = tmp_path / "index.json"
        result = indexer.run(output, cancel_event=cancel, progress_callback=progress)

        assert result.state == IndexingState.CANCELLED
        assert indexer.state == IndexingState.CANCELLED
        assert result.codebase is None
        assert not output.exists()
        assert len(parser.calls) == 2

    def test_cancel_before_start(self, five_files: Path, tmp_path: Path):
        parser = _CountingParser()
        registry = ParserRegistry()
        registry.register(parser)
        indexer = CodebaseIndexer(five_files, registry, config=_config(tmp_path))
        cancel = threading.Event()
        cancel.set()

        result = indexer.run(tmp_path / "index.json", cancel_event=cancel)

        assert result.state == IndexingState.CANCELLED
        assert parser.calls == []

    def test_cancel_with_worker_pool(self, five_files: Path, tmp_path: Path):
        parser = _CountingParser()
        registry = ParserRegistry()
        registry.register(parser)
        indexer = CodebaseIndexer(five_files, registry, config=_config(tmp_path, max_workers=3))
        cancel = threading.Event()

        result = indexer.run(
            tmp_path / "index.json",
            cancel_event=cancel,
            progress_callback=lambda processed, total: cancel.set(),
        )

        assert result.state == IndexingState.CANCELLED
        assert result.codebase is None
        assert not (tmp_path / "index.json").exists()

    @pytest.mark.parametrize("workers", [1, 3])
    def test_progress_reports_every_file(self, five_files: Path, tmp_path: Path, workers: int):
        registry = ParserRegistry()
        registry.register(_CountingParser())
        indexer = CodebaseIndexer(five_files, registry, config=_config(tmp_path, max_workers=workers))
        calls = []

        result = indexer.build_codebase(progress_callback=lambda p, t: calls.append((p, t)))

        assert result.state == IndexingState.DONE
        assert calls == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]
        assert [f.relative_path for f in result.codebase.files] == [f"file{i}.txt" for i in range(5)]

    def test_concurrent_run_rejected(self, five_files: Path, tmp_path: Path):
        registry = ParserRegistry()
        registry.register(_CountingParser())
        indexer = CodebaseIndexer(five_files, registry, config=_config(tmp_path, max_workers=1))
        errors = []

        def progress(processed: int, total: int) -> None:
            if processed == 1:
                try:
                    indexer.build_codebase()
                except RuntimeError as e:
                    errors.append(e)

        indexer.run(tmp_path / "index.json", progress_callback=progress)

        assert len(errors) == 1
        assert "already in progress" in str(errors[0])

    def test_progress_callback_error_resets_state(self, five_files: Path, tmp_path: Path):
        registry = ParserRegistry()
        registry.register(_CountingParser())
        indexer = CodebaseIndexer(five_files, registry, config=_config(tmp_path, max_workers=1))

        def progress(processed: int, total: int) -> None:
            raise ValueError("callback failed")

        with pytest.raises(ValueError):
            indexer.build_codebase(progress_callback=progress)
        assert indexer.state == IndexingState.IDLE

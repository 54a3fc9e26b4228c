# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Source tree enumeration for indexing runs.

This module walks a root directory and yields the files eligible for parsing:
- Hardcoded dependency/build directories are pruned
- Sensitive files (keys, credentials) are never read
- .gitignore and user-configured glob patterns are respected
- Only extensions some registered parser accepts are returned

Enumeration order is deterministic: entries are sorted by name at every
level, so two scans of an unchanged tree produce identical lists.

Error handling:
- Root missing, not a directory or unreadable: ScanError (fatal)
- Unreadable subdirectory: skipped and reported on the ScanResult
"""

import fnmatch
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

_MAX_PATTERN_LENGTH = 1000


class IndexingError(Exception):
    """Base class for fatal indexing failures."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path


class ScanError(IndexingError):
    """The root directory could not be enumerated."""

    pass


@dataclass
class ScanResult:
    """Outcome of one directory walk.

    Attributes:
        files: Eligible files in enumeration order
        skipped_directories: (path, reason) for each unreadable subdirectory
        ignored_count: Files and directories excluded by ignore patterns
    """

    files: List[Path] = field(default_factory=list)
    skipped_directories: List[Tuple[str, str]] = field(default_factory=list)
    ignored_count: int = 0


class FileScanner:
    """Enumerates the eligible files under a root directory.

    Usage:
        scanner = FileScanner("/path/to/project", supported_extensions={".py"})
        result = scanner.scan()
        for path in result.files:
            ...
    """

    # Dependency and build directories that are never indexed
    ALWAYS_IGNORED = {
        ".git",
        ".hg",
        ".svn",
        "__pycache__",
        ".venv",
        "venv",
        "node_modules",
        ".tox",
        ".pytest_cache",
        ".mypy_cache",
        ".ruff_cache",
        ".eggs",
        "*.egg-info",
        "bin",
        "obj",
        ".vs",
        ".idea",
    }

    # Sensitive files that should never be read
    SENSITIVE_PATTERNS = {
        ".env",
        ".env.*",
        "credentials.json",
        "*.key",
        "*.pem",
        "*.p12",
        "*.pfx",
        "*.jks",
        "*.keystore",
        "id_rsa",
        "id_dsa",
        "id_ecdsa",
        "id_ed25519",
        "secrets.yaml",
        "secrets.yml",
        ".npmrc",
        ".pypirc",
        ".aws",
    }

    def __init__(
        self,
        root_directory: str,
        supported_extensions: Optional[Iterable[str]] = None,
        ignore_patterns: Optional[Iterable[str]] = None,
        gitignore_path: Optional[str] = None,
    ):
        """Initialize FileScanner.

        Args:
            root_directory: Directory to enumerate
            supported_extensions: Extensions to keep (with leading dot, any
                case). None keeps every file.
            ignore_patterns: Additional user-configured glob patterns
            gitignore_path: Path to .gitignore (defaults to {root}/.gitignore)
        """
        self.root_directory = Path(root_directory).resolve()
        self.supported_extensions: Optional[Set[str]] = (
            {self._normalize_extension(ext) for ext in supported_extensions}
            if supported_extensions is not None
            else None
        )
        self.user_ignore_patterns: Set[str] = set(ignore_patterns or [])
        self.gitignore_path = (
            Path(gitignore_path) if gitignore_path else self.root_directory / ".gitignore"
        )
        self._gitignore_patterns: Set[str] = self._load_gitignore()

    @staticmethod
    def _normalize_extension(extension: str) -> str:
        extension = extension.lower()
        return extension if extension.startswith(".") else f".{extension}"

    def _load_gitignore(self) -> Set[str]:
        """Load .gitignore patterns, skipping comments and oversized lines."""
        patterns: Set[str] = set()

        if not self.gitignore_path.exists():
            logger.debug(f"No .gitignore found at {self.gitignore_path}")
            return patterns

        try:
            with open(self.gitignore_path, encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    line = line.strip()
                    if not line or line.startswith("#") or line.startswith("!"):
                        continue

                    if len(line) > _MAX_PATTERN_LENGTH:
                        logger.warning(
                            f".gitignore line {line_num}: Pattern too long "
                            f"(>{_MAX_PATTERN_LENGTH} chars), skipping"
                        )
                        continue

                    # Directory patterns ("build/") match the directory name
                    patterns.add(line.rstrip("/").lstrip("/"))

            logger.debug(f"Loaded {len(patterns)} patterns from .gitignore")
        except (FileNotFoundError, PermissionError) as e:
            logger.warning(f"Failed to load .gitignore: {e}")
        except UnicodeDecodeError as e:
            logger.error(f"Failed to decode .gitignore (encoding error): {e}")
        except OSError as e:
            logger.error(f"Failed to read .gitignore: {e}")

        return patterns

    def should_ignore(self, path: Path) -> bool:
        """Check a file or directory against every ignore rule.

        Hardcoded and sensitive patterns are matched against each component of
        the path relative to the root; .gitignore and user patterns against
        the relative path and the bare name.
        """
        try:
            rel_path = path.relative_to(self.root_directory)
        except ValueError:
            rel_path = path
        rel_path_str = rel_path.as_posix()

        for part in rel_path.parts:
            for pattern in self.ALWAYS_IGNORED:
                if fnmatch.fnmatch(part, pattern):
                    return True
            for pattern in self.SENSITIVE_PATTERNS:
                if fnmatch.fnmatch(part, pattern):
                    logger.debug(f"Ignoring sensitive file/directory: {part}")
                    return True

        for pattern in self._gitignore_patterns | self.user_ignore_patterns:
            if fnmatch.fnmatch(rel_path_str, pattern) or fnmatch.fnmatch(path.name, pattern):
                return True

        return False

    def is_supported_file(self, path: Path) -> bool:
        if self.supported_extensions is None:
            return True
        return path.suffix.lower() in self.supported_extensions

    def scan(self) -> ScanResult:
        """Walk the root directory.

        Returns:
            ScanResult with eligible files in sorted enumeration order.

        Raises:
            ScanError: If the root does not exist, is not a directory, or
                cannot be listed.
        """
        root = self.root_directory
        if not root.exists():
            raise ScanError(f"Root directory does not exist: {root}", path=str(root))
        if not root.is_dir():
            raise ScanError(f"Root path is not a directory: {root}", path=str(root))

        result = ScanResult()
        try:
            entries = self._list_directory(root)
        except OSError as e:
            raise ScanError(f"Cannot read root directory {root}: {e}", path=str(root)) from e

        self._walk(entries, result)
        logger.info(
            f"Scanned {root}: {len(result.files)} files, "
            f"{len(result.skipped_directories)} unreadable directories, "
            f"{result.ignored_count} ignored"
        )
        return result

    def _list_directory(self, directory: Path) -> List[os.DirEntry]:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda entry: entry.name)

    def _walk(self, entries: List[os.DirEntry], result: ScanResult) -> None:
        for entry in entries:
            path = Path(entry.path)
            if self.should_ignore(path):
                result.ignored_count += 1
                continue

            if entry.is_dir(follow_symlinks=False):
                try:
                    children = self._list_directory(path)
                except OSError as e:
                    logger.warning(f"Skipping unreadable directory {path}: {e}")
                    result.skipped_directories.append((str(path), str(e)))
                    continue
                self._walk(children, result)
            elif entry.is_file() and self.is_supported_file(path):
                result.files.append(path)

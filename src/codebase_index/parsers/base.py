# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Base interface for language parser plugins.

A parser is the only component that understands source syntax. Everything
downstream (optimizer, serializer) works on the entity model it produces.

Contract:
- parse_file() receives the already-read text; parsers never touch the disk
- A file that cannot be understood raises ParseError; the indexer logs it,
  reports it as an issue and continues with the next file
- Parsers may be called from worker threads and must not share mutable state
  between calls
"""

from abc import ABC, abstractmethod
from typing import List

from codebase_index.models import SourceFile


class ParseError(Exception):
    """A source file could not be parsed."""

    def __init__(self, message: str, file_path: str = "", line: int = 0) -> None:
        super().__init__(message)
        self.file_path = file_path
        self.line = line


class LanguageParser(ABC):
    """Abstract base class for language parser plugins.

    Lifecycle:
    1. Parser is registered in ParserRegistry
    2. The indexer asks the registry for the parser of each scanned file
    3. parse_file() returns one SourceFile per file
    """

    @abstractmethod
    def name(self) -> str:
        """Return parser name for logging."""
        pass

    @abstractmethod
    def language(self) -> str:
        """Return the language tag written on produced SourceFile records."""
        pass

    @abstractmethod
    def supported_extensions(self) -> List[str]:
        """Return handled extensions, lowercase with leading dot."""
        pass

    def can_parse_extension(self, extension: str) -> bool:
        """Check an extension, given with or without leading dot, in any case."""
        if not extension:
            return False
        normalized = extension.lower()
        if not normalized.startswith("."):
            normalized = f".{normalized}"
        return normalized in {ext.lower() for ext in self.supported_extensions()}

    @abstractmethod
    def parse_file(self, file_path: str, source: str, root_directory: str) -> SourceFile:
        """Extract the declarations of one file.

        Args:
            file_path: Absolute path of the file.
            source: Full text of the file.
            root_directory: Root of the indexing run, for relative paths.

        Returns:
            SourceFile with namespaces, imports and types populated.

        Raises:
            ParseError: If the source cannot be parsed.
        """
        pass

# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Registry for language parser plugins.

Maps file extensions to the parser that handles them. Parsers are consulted
in registration order; the first that accepts an extension wins.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from .base import LanguageParser

logger = logging.getLogger(__name__)


class ParserRegistry:
    """Registry of language parsers with extension-based dispatch.

    Thread Safety:
    - NOT thread-safe for registration
    - Register all parsers before an indexing run; lookups during the run
      are read-only
    """

    def __init__(self) -> None:
        """Initialize empty parser registry."""
        self._parsers: List[LanguageParser] = []

    def register(self, parser: LanguageParser) -> None:
        """Register a parser plugin.

        Raises:
            TypeError: If parser is not a LanguageParser instance.
        """
        if not isinstance(parser, LanguageParser):
            raise TypeError(f"Parser must be a LanguageParser instance, got {type(parser)}")

        self._parsers.append(parser)
        logger.debug(
            f"Registered parser '{parser.name()}' for {', '.join(parser.supported_extensions())}"
        )

    def get_parser(self, file_path: Union[str, Path]) -> Optional[LanguageParser]:
        """Return the parser for a file, or None if no parser handles it."""
        extension = Path(file_path).suffix
        for parser in self._parsers:
            if parser.can_parse_extension(extension):
                return parser
        return None

    def get_parsers(self) -> List[LanguageParser]:
        return list(self._parsers)

    def supported_extensions(self) -> List[str]:
        """Every extension handled by some parser, sorted, lowercase."""
        extensions = set()
        for parser in self._parsers:
            extensions.update(ext.lower() for ext in parser.supported_extensions())
        return sorted(extensions)

    def clear(self) -> None:
        """Remove all registered parsers."""
        self._parsers.clear()

    def count(self) -> int:
        return len(self._parsers)


def default_registry(
    include_private_members: bool = False, include_protected_members: bool = True
) -> ParserRegistry:
    """Registry holding the bundled parsers."""
    from .python_parser import PythonParser

    registry = ParserRegistry()
    registry.register(
        PythonParser(
            include_private_members=include_private_members,
            include_protected_members=include_protected_members,
        )
    )
    return registry

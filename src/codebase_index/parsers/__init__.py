# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Language parser plugins.

A parser turns the text of one source file into a SourceFile record. The
indexer only knows the LanguageParser contract; which languages are
understood is decided by what is registered in the ParserRegistry.

Components:
- LanguageParser: Abstract base class for parser plugins
- ParseError: Raised by a parser when a file cannot be understood
- ParserRegistry: Extension-based dispatch to registered parsers
- PythonParser: ast-based parser for Python modules
"""

from codebase_index.parsers.base import LanguageParser, ParseError
from codebase_index.parsers.python_parser import PythonParser
from codebase_index.parsers.registry import ParserRegistry, default_registry

__all__ = [
    "LanguageParser",
    "ParseError",
    "ParserRegistry",
    "PythonParser",
    "default_registry",
]

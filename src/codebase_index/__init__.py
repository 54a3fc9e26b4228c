# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Structural codebase indexer.

Extracts types, members and relationships from a source tree and writes a
compact, deduplicated index for large-context consumers.
"""

__version__ = "0.1.0"

from .config import Config, ConfigurationError
from .indexer import (
    ArtifactWriteError,
    CodebaseIndexer,
    IndexingError,
    IndexingIssue,
    IndexingMetadata,
    IndexingResult,
    IndexingState,
    ScanError,
)
from .interner import StringInterner
from .models import (
    AccessLevel,
    Codebase,
    MethodDefinition,
    ParameterDefinition,
    PropertyDefinition,
    RelationshipKind,
    SourceFile,
    TypeDefinition,
    TypeKind,
    TypeRelationship,
)
from .parsers import LanguageParser, ParseError, ParserRegistry, PythonParser, default_registry
from .serializer import (
    CborSerializer,
    IndexSerializer,
    InvalidDataError,
    JsonSerializer,
    load_artifact,
    load_artifact_file,
    serializer_for,
)
from .token_optimizer import OptimizedCodebase, TokenOptimizer

__all__ = [
    "AccessLevel",
    "ArtifactWriteError",
    "CborSerializer",
    "Codebase",
    "CodebaseIndexer",
    "Config",
    "ConfigurationError",
    "IndexSerializer",
    "IndexingError",
    "IndexingIssue",
    "IndexingMetadata",
    "IndexingResult",
    "IndexingState",
    "InvalidDataError",
    "JsonSerializer",
    "LanguageParser",
    "MethodDefinition",
    "OptimizedCodebase",
    "ParameterDefinition",
    "ParseError",
    "ParserRegistry",
    "PropertyDefinition",
    "PythonParser",
    "RelationshipKind",
    "ScanError",
    "SourceFile",
    "StringInterner",
    "TokenOptimizer",
    "TypeDefinition",
    "TypeKind",
    "TypeRelationship",
    "default_registry",
    "load_artifact",
    "load_artifact_file",
    "serializer_for",
]

# Conditional import for MCP server (requires the mcp package)
try:
    from .mcp_server import CodebaseIndexMCPServer

    __all__.append("CodebaseIndexMCPServer")
except ImportError:
    # MCP package not available
    pass

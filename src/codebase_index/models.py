# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Core data models for the codebase index.

This module defines the entity model produced by the extraction step:
- TypeKind / AccessLevel / RelationshipKind: string constants
- ParameterDefinition: A method parameter
- MethodDefinition: A method declared on a type
- PropertyDefinition: A property declared on a type
- TypeRelationship: An edge from a type to another type, by name
- TypeDefinition: Class, interface, struct or enum (one tagged record)
- SourceFile: One parsed file and the types it declares
- Codebase: Root aggregate owning every file

Ownership flows strictly downwards. A nested type refers to its parent by
name only, never by object reference.

All models use JSON-compatible primitives for serialization. Timestamps are
timezone-aware datetimes serialized as ISO 8601 strings.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set


class TypeKind:
    """Kinds of type declarations.

    Design: Using class constants (not Enum) for JSON-compatible strings.
    """

    CLASS = "class"
    INTERFACE = "interface"
    STRUCT = "struct"
    ENUM = "enum"

    ALL = (CLASS, INTERFACE, STRUCT, ENUM)


class AccessLevel:
    """Declared accessibility of a type or member."""

    PUBLIC = "public"
    PRIVATE = "private"
    PROTECTED = "protected"
    INTERNAL = "internal"
    PROTECTED_INTERNAL = "protected internal"


class RelationshipKind:
    """Well-known relationship kinds between types.

    The relationship kind on a TypeRelationship is a free string; these are
    the values produced by the bundled parser.
    """

    INHERITANCE = "inheritance"  # derived from
    IMPLEMENTATION = "implementation"  # implements an interface
    COMPOSITION = "composition"  # has a member of type
    AGGREGATION = "aggregation"  # holds a collection of
    DEPENDENCY = "dependency"  # uses as parameter or local
    ASSOCIATION = "association"  # references through calls


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class ParameterDefinition:
    """A single method parameter."""

    name: str
    type_name: str
    default_value: Optional[str] = None  # Default literal as source text
    is_by_ref: bool = False
    is_out: bool = False
    is_variadic: bool = False
    is_optional: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "name": self.name,
            "type_name": self.type_name,
            "default_value": self.default_value,
            "is_by_ref": self.is_by_ref,
            "is_out": self.is_out,
            "is_variadic": self.is_variadic,
            "is_optional": self.is_optional,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParameterDefinition":
        """Deserialize from JSON-compatible dict."""
        return cls(
            name=data["name"],
            type_name=data["type_name"],
            default_value=data.get("default_value"),
            is_by_ref=data.get("is_by_ref", False),
            is_out=data.get("is_out", False),
            is_variadic=data.get("is_variadic", False),
            is_optional=data.get("is_optional", False),
        )


@dataclass
class MethodDefinition:
    """A method declared on a type."""

    name: str
    return_type: str
    access: str = AccessLevel.PUBLIC
    is_static: bool = False
    is_virtual: bool = False
    is_override: bool = False
    is_abstract: bool = False
    is_async: bool = False
    start_line: int = 0
    end_line: int = 0
    documentation: str = ""
    parameters: List[ParameterDefinition] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "name": self.name,
            "return_type": self.return_type,
            "access": self.access,
            "is_static": self.is_static,
            "is_virtual": self.is_virtual,
            "is_override": self.is_override,
            "is_abstract": self.is_abstract,
            "is_async": self.is_async,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "documentation": self.documentation,
            "parameters": [p.to_dict() for p in self.parameters],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MethodDefinition":
        """Deserialize from JSON-compatible dict."""
        return cls(
            name=data["name"],
            return_type=data["return_type"],
            access=data.get("access", AccessLevel.PUBLIC),
            is_static=data.get("is_static", False),
            is_virtual=data.get("is_virtual", False),
            is_override=data.get("is_override", False),
            is_abstract=data.get("is_abstract", False),
            is_async=data.get("is_async", False),
            start_line=data.get("start_line", 0),
            end_line=data.get("end_line", 0),
            documentation=data.get("documentation", ""),
            parameters=[ParameterDefinition.from_dict(p) for p in data.get("parameters", [])],
        )


@dataclass
class PropertyDefinition:
    """A property declared on a type."""

    name: str
    type_name: str
    access: str = AccessLevel.PUBLIC
    is_static: bool = False
    is_virtual: bool = False
    is_override: bool = False
    is_abstract: bool = False
    has_getter: bool = True
    has_setter: bool = True
    has_private_setter: bool = False
    is_auto_implemented: bool = False
    start_line: int = 0
    end_line: int = 0
    documentation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "name": self.name,
            "type_name": self.type_name,
            "access": self.access,
            "is_static": self.is_static,
            "is_virtual": self.is_virtual,
            "is_override": self.is_override,
            "is_abstract": self.is_abstract,
            "has_getter": self.has_getter,
            "has_setter": self.has_setter,
            "has_private_setter": self.has_private_setter,
            "is_auto_implemented": self.is_auto_implemented,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "documentation": self.documentation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PropertyDefinition":
        """Deserialize from JSON-compatible dict."""
        return cls(
            name=data["name"],
            type_name=data["type_name"],
            access=data.get("access", AccessLevel.PUBLIC),
            is_static=data.get("is_static", False),
            is_virtual=data.get("is_virtual", False),
            is_override=data.get("is_override", False),
            is_abstract=data.get("is_abstract", False),
            has_getter=data.get("has_getter", True),
            has_setter=data.get("has_setter", True),
            has_private_setter=data.get("has_private_setter", False),
            is_auto_implemented=data.get("is_auto_implemented", False),
            start_line=data.get("start_line", 0),
            end_line=data.get("end_line", 0),
            documentation=data.get("documentation", ""),
        )


@dataclass
class TypeRelationship:
    """Relationship from the owning type to another type.

    The target is a type name as written in source; it is not resolved.
    """

    kind: str  # RelationshipKind value (stored as string)
    target_type: str
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "kind": self.kind,
            "target_type": self.target_type,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TypeRelationship":
        """Deserialize from JSON-compatible dict."""
        return cls(
            kind=data["kind"],
            target_type=data["target_type"],
            description=data.get("description", ""),
        )


@dataclass
class TypeDefinition:
    """A class, interface, struct or enum declaration.

    One record covers all four kinds; ``kind`` is the discriminator.

    Invariants:
    - fully_qualified_name is always derived from namespace + name
    - a nested type carries a non-empty parent_type_name
    """

    name: str
    namespace: str = ""
    kind: str = TypeKind.CLASS
    access: str = AccessLevel.PUBLIC
    is_static: bool = False
    is_abstract: bool = False
    is_sealed: bool = False
    is_partial: bool = False
    is_nested: bool = False
    parent_type_name: str = ""  # Back-reference by name, never an object
    documentation: str = ""
    methods: List[MethodDefinition] = field(default_factory=list)
    properties: List[PropertyDefinition] = field(default_factory=list)
    relationships: List[TypeRelationship] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.is_nested and not self.parent_type_name:
            raise ValueError(f"Nested type '{self.name}' must name its parent type")

    @property
    def fully_qualified_name(self) -> str:
        """Namespace-qualified name, or the bare name for global types."""
        if self.namespace:
            return f"{self.namespace}.{self.name}"
        return self.name

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict.

        fully_qualified_name is written for readers of the text form; it is
        recomputed rather than read back on load.
        """
        return {
            "name": self.name,
            "fully_qualified_name": self.fully_qualified_name,
            "namespace": self.namespace,
            "kind": self.kind,
            "access": self.access,
            "is_static": self.is_static,
            "is_abstract": self.is_abstract,
            "is_sealed": self.is_sealed,
            "is_partial": self.is_partial,
            "is_nested": self.is_nested,
            "parent_type_name": self.parent_type_name,
            "documentation": self.documentation,
            "methods": [m.to_dict() for m in self.methods],
            "properties": [p.to_dict() for p in self.properties],
            "relationships": [r.to_dict() for r in self.relationships],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TypeDefinition":
        """Deserialize from JSON-compatible dict."""
        return cls(
            name=data["name"],
            namespace=data.get("namespace", ""),
            kind=data.get("kind", TypeKind.CLASS),
            access=data.get("access", AccessLevel.PUBLIC),
            is_static=data.get("is_static", False),
            is_abstract=data.get("is_abstract", False),
            is_sealed=data.get("is_sealed", False),
            is_partial=data.get("is_partial", False),
            is_nested=data.get("is_nested", False),
            parent_type_name=data.get("parent_type_name", ""),
            documentation=data.get("documentation", ""),
            methods=[MethodDefinition.from_dict(m) for m in data.get("methods", [])],
            properties=[PropertyDefinition.from_dict(p) for p in data.get("properties", [])],
            relationships=[TypeRelationship.from_dict(r) for r in data.get("relationships", [])],
        )


@dataclass
class SourceFile:
    """One source file and the declarations extracted from it."""

    absolute_path: str
    relative_path: str
    language: str
    size_bytes: int = 0
    last_modified: datetime = field(default_factory=utc_now)
    namespaces: List[str] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)
    types: List[TypeDefinition] = field(default_factory=list)

    @property
    def path(self) -> str:
        """Preferred display path: relative when known."""
        return self.relative_path or self.absolute_path

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "absolute_path": self.absolute_path,
            "relative_path": self.relative_path,
            "language": self.language,
            "size_bytes": self.size_bytes,
            "last_modified": _format_timestamp(self.last_modified),
            "namespaces": list(self.namespaces),
            "imports": list(self.imports),
            "types": [t.to_dict() for t in self.types],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceFile":
        """Deserialize from JSON-compatible dict.

        Raises:
            KeyError: If required fields are missing from data dict.
        """
        return cls(
            absolute_path=data["absolute_path"],
            relative_path=data.get("relative_path", ""),
            language=data["language"],
            size_bytes=data.get("size_bytes", 0),
            last_modified=_parse_timestamp(data["last_modified"]),
            namespaces=list(data.get("namespaces", [])),
            imports=list(data.get("imports", [])),
            types=[TypeDefinition.from_dict(t) for t in data.get("types", [])],
        )


@dataclass
class Codebase:
    """Root aggregate of one indexing run.

    Every count and flat view is computed from ``files`` on access so
    derived state can never drift from the live sequences.
    """

    root_directory: str
    created_at: datetime = field(default_factory=utc_now)
    files: List[SourceFile] = field(default_factory=list)

    @property
    def all_types(self) -> List[TypeDefinition]:
        """Every type in file order (denormalized view)."""
        return [t for f in self.files for t in f.types]

    @property
    def all_namespaces(self) -> Set[str]:
        """Distinct namespace names declared by files or types."""
        names: Set[str] = set()
        for source_file in self.files:
            names.update(ns for ns in source_file.namespaces if ns)
            names.update(t.namespace for t in source_file.types if t.namespace)
        return names

    @property
    def total_file_count(self) -> int:
        return len(self.files)

    @property
    def total_type_count(self) -> int:
        return sum(len(f.types) for f in self.files)

    @property
    def total_method_count(self) -> int:
        return sum(len(t.methods) for t in self.all_types)

    @property
    def total_property_count(self) -> int:
        return sum(len(t.properties) for t in self.all_types)

    def count_types(self, kind: str) -> int:
        """Count types of one TypeKind."""
        return sum(1 for t in self.all_types if t.kind == kind)

    @property
    def language_distribution(self) -> Dict[str, int]:
        """Number of files per language tag."""
        return dict(Counter(f.language for f in self.files))

    def find_type(self, fully_qualified_name: str) -> Optional[TypeDefinition]:
        """Look up a type by fully-qualified name.

        Returns:
            First matching TypeDefinition, or None.
        """
        for type_def in self.all_types:
            if type_def.fully_qualified_name == fully_qualified_name:
                return type_def
        return None

    def summary(self) -> Dict[str, Any]:
        """Counts describing the aggregate (recomputed on every call)."""
        return {
            "root_directory": self.root_directory,
            "created_at": _format_timestamp(self.created_at),
            "total_file_count": self.total_file_count,
            "total_type_count": self.total_type_count,
            "total_class_count": self.count_types(TypeKind.CLASS),
            "total_interface_count": self.count_types(TypeKind.INTERFACE),
            "total_struct_count": self.count_types(TypeKind.STRUCT),
            "total_enum_count": self.count_types(TypeKind.ENUM),
            "total_method_count": self.total_method_count,
            "total_property_count": self.total_property_count,
            "namespace_count": len(self.all_namespaces),
            "language_distribution": self.language_distribution,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict.

        The derived views (namespaces, counts) are included for readers of
        the text form and are ignored by from_dict().
        """
        return {
            "root_directory": self.root_directory,
            "created_at": _format_timestamp(self.created_at),
            "all_namespaces": sorted(self.all_namespaces),
            "total_file_count": self.total_file_count,
            "total_type_count": self.total_type_count,
            "files": [f.to_dict() for f in self.files],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Codebase":
        """Deserialize from JSON-compatible dict.

        Raises:
            KeyError: If required fields are missing from data dict.
        """
        return cls(
            root_directory=data["root_directory"],
            created_at=_parse_timestamp(data["created_at"]),
            files=[SourceFile.from_dict(f) for f in data.get("files", [])],
        )

# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Token optimization for extracted codebase metadata.

Shrinks an entity graph so it can be handed to large-context consumers
without transmitting full source. Three techniques are combined:

1. Documentation normalization: whitespace runs collapse to one space and
   text longer than 200 characters is cut to 197 plus "...". This is the
   only lossy step.
2. Signature compaction: each method is rendered as one short line, e.g.
   ``pub s as Task<int> Compute(int x,string y=a)``.
3. String interning: every string field is replaced by an identifier from a
   StringInterner session; the exported table resolves identifiers back.

Two modes are supported:
- optimize(): builds a separate identifier-keyed OptimizedCodebase and leaves
  the input graph untouched.
- optimize_in_place(): rewrites documentation text on the input graph and
  leaves every structural field alone, for consumers that want a smaller but
  still self-describing graph.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from codebase_index.interner import ABSENT_ID, StringInterner
from codebase_index.models import (
    Codebase,
    MethodDefinition,
    ParameterDefinition,
    PropertyDefinition,
    SourceFile,
    TypeDefinition,
    TypeRelationship,
    _format_timestamp,
    _parse_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

MAX_DOCUMENTATION_LENGTH = 200
TRUNCATED_DOCUMENTATION_LENGTH = 197
ELLIPSIS = "..."

OPTIMIZATION_LEVEL = "advanced"

_WHITESPACE_RUN = re.compile(r"\s+")

_ACCESS_ABBREVIATIONS = {
    "public": "pub",
    "private": "prv",
    "protected": "pro",
    "internal": "int",
    "protected internal": "pri",
    "protected-internal": "pri",
}


def normalize_documentation(text: Optional[str]) -> str:
    """Collapse whitespace and truncate long documentation.

    Args:
        text: Raw documentation text (may be None).

    Returns:
        Single-spaced, trimmed text of at most 200 characters. Empty string
        for None or whitespace-only input. Characters that cannot be encoded
        as UTF-8 (lone surrogates) become "?".
    """
    if not text:
        return ""
    text = text.encode("utf-8", "replace").decode("utf-8")
    collapsed = _WHITESPACE_RUN.sub(" ", text).strip()
    if len(collapsed) > MAX_DOCUMENTATION_LENGTH:
        collapsed = collapsed[:TRUNCATED_DOCUMENTATION_LENGTH] + ELLIPSIS
    return collapsed


def abbreviate_access(access: Optional[str]) -> str:
    """Abbreviate an access level; unknown values pass through unchanged."""
    if not access:
        return ""
    return _ACCESS_ABBREVIATIONS.get(access.lower(), access)


def _compact_parameter(param: ParameterDefinition) -> str:
    if param.is_out:
        prefix = "out "
    elif param.is_by_ref:
        prefix = "ref "
    elif param.is_variadic:
        prefix = "params "
    else:
        prefix = ""

    text = f"{prefix}{param.type_name} {param.name}"
    if param.is_optional:
        default = param.default_value if param.default_value is not None else "null"
        text += f"={default}"
    return text


def compact_signature(method: MethodDefinition) -> str:
    """Render a method as one compact signature line.

    Token order: access, flags (static s, abstract a, virtual v, override o,
    async as), return type, name, parameter list.
    """
    tokens: List[str] = []
    access = abbreviate_access(method.access)
    if access:
        tokens.append(access)

    if method.is_static:
        tokens.append("s")
    if method.is_abstract:
        tokens.append("a")
    if method.is_virtual:
        tokens.append("v")
    if method.is_override:
        tokens.append("o")
    if method.is_async:
        tokens.append("as")

    if method.return_type:
        tokens.append(method.return_type)

    params = ",".join(_compact_parameter(p) for p in method.parameters)
    tokens.append(f"{method.name}({params})")
    return " ".join(tokens)


def _put_flag(result: Dict[str, Any], key: str, value: bool) -> None:
    if value:
        result[key] = True


def _put_id(result: Dict[str, Any], key: str, value: int) -> None:
    if value != ABSENT_ID:
        result[key] = value


@dataclass
class OptimizedParameter:
    """Identifier-keyed parameter record."""

    name: int
    type_name: int
    default_value: int = ABSENT_ID
    is_by_ref: bool = False
    is_out: bool = False
    is_variadic: bool = False
    is_optional: bool = False
    # The interner maps "" to the absent id; this keeps "" apart from no default
    has_empty_default: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to compact dict (false flags and absent ids omitted)."""
        result: Dict[str, Any] = {"n": self.name, "t": self.type_name}
        _put_id(result, "d", self.default_value)
        _put_flag(result, "ref", self.is_by_ref)
        _put_flag(result, "out", self.is_out)
        _put_flag(result, "var", self.is_variadic)
        _put_flag(result, "opt", self.is_optional)
        _put_flag(result, "d0", self.has_empty_default)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptimizedParameter":
        return cls(
            name=data["n"],
            type_name=data["t"],
            default_value=data.get("d", ABSENT_ID),
            is_by_ref=data.get("ref", False),
            is_out=data.get("out", False),
            is_variadic=data.get("var", False),
            is_optional=data.get("opt", False),
            has_empty_default=data.get("d0", False),
        )


@dataclass
class OptimizedMethod:
    """Identifier-keyed method record with its compact signature id."""

    name: int
    return_type: int
    access: int
    signature: int
    documentation: int = ABSENT_ID
    is_static: bool = False
    is_virtual: bool = False
    is_override: bool = False
    is_abstract: bool = False
    is_async: bool = False
    start_line: int = 0
    end_line: int = 0
    parameters: List[OptimizedParameter] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"n": self.name, "rt": self.return_type}
        _put_id(result, "acc", self.access)
        result["sig"] = self.signature
        _put_id(result, "doc", self.documentation)
        _put_flag(result, "s", self.is_static)
        _put_flag(result, "v", self.is_virtual)
        _put_flag(result, "o", self.is_override)
        _put_flag(result, "a", self.is_abstract)
        _put_flag(result, "as", self.is_async)
        result["start"] = self.start_line
        result["end"] = self.end_line
        if self.parameters:
            result["params"] = [p.to_dict() for p in self.parameters]
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptimizedMethod":
        return cls(
            name=data["n"],
            return_type=data["rt"],
            access=data.get("acc", ABSENT_ID),
            signature=data["sig"],
            documentation=data.get("doc", ABSENT_ID),
            is_static=data.get("s", False),
            is_virtual=data.get("v", False),
            is_override=data.get("o", False),
            is_abstract=data.get("a", False),
            is_async=data.get("as", False),
            start_line=data.get("start", 0),
            end_line=data.get("end", 0),
            parameters=[OptimizedParameter.from_dict(p) for p in data.get("params", [])],
        )


@dataclass
class OptimizedProperty:
    """Identifier-keyed property record."""

    name: int
    type_name: int
    access: int
    documentation: int = ABSENT_ID
    is_static: bool = False
    is_virtual: bool = False
    is_override: bool = False
    is_abstract: bool = False
    has_getter: bool = False
    has_setter: bool = False
    has_private_setter: bool = False
    is_auto_implemented: bool = False
    start_line: int = 0
    end_line: int = 0

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"n": self.name, "t": self.type_name}
        _put_id(result, "acc", self.access)
        _put_id(result, "doc", self.documentation)
        _put_flag(result, "s", self.is_static)
        _put_flag(result, "v", self.is_virtual)
        _put_flag(result, "o", self.is_override)
        _put_flag(result, "a", self.is_abstract)
        _put_flag(result, "get", self.has_getter)
        _put_flag(result, "set", self.has_setter)
        _put_flag(result, "pset", self.has_private_setter)
        _put_flag(result, "auto", self.is_auto_implemented)
        result["start"] = self.start_line
        result["end"] = self.end_line
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptimizedProperty":
        return cls(
            name=data["n"],
            type_name=data["t"],
            access=data.get("acc", ABSENT_ID),
            documentation=data.get("doc", ABSENT_ID),
            is_static=data.get("s", False),
            is_virtual=data.get("v", False),
            is_override=data.get("o", False),
            is_abstract=data.get("a", False),
            has_getter=data.get("get", False),
            has_setter=data.get("set", False),
            has_private_setter=data.get("pset", False),
            is_auto_implemented=data.get("auto", False),
            start_line=data.get("start", 0),
            end_line=data.get("end", 0),
        )


@dataclass
class OptimizedRelationship:
    """Identifier-keyed relationship record."""

    kind: int
    target_type: int
    description: int = ABSENT_ID

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"k": self.kind, "tgt": self.target_type}
        _put_id(result, "desc", self.description)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptimizedRelationship":
        return cls(
            kind=data["k"],
            target_type=data["tgt"],
            description=data.get("desc", ABSENT_ID),
        )


@dataclass
class OptimizedType:
    """Identifier-keyed type record."""

    name: int
    fully_qualified_name: int
    namespace: int
    kind: int
    access: int
    documentation: int = ABSENT_ID
    is_static: bool = False
    is_abstract: bool = False
    is_sealed: bool = False
    is_partial: bool = False
    is_nested: bool = False
    parent_type_name: int = ABSENT_ID
    methods: List[OptimizedMethod] = field(default_factory=list)
    properties: List[OptimizedProperty] = field(default_factory=list)
    relationships: List[OptimizedRelationship] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"n": self.name, "fqn": self.fully_qualified_name}
        _put_id(result, "ns", self.namespace)
        result["kind"] = self.kind
        _put_id(result, "acc", self.access)
        _put_id(result, "doc", self.documentation)
        _put_flag(result, "s", self.is_static)
        _put_flag(result, "a", self.is_abstract)
        _put_flag(result, "sealed", self.is_sealed)
        _put_flag(result, "partial", self.is_partial)
        _put_flag(result, "nested", self.is_nested)
        _put_id(result, "parent", self.parent_type_name)
        if self.methods:
            result["m"] = [m.to_dict() for m in self.methods]
        if self.properties:
            result["p"] = [p.to_dict() for p in self.properties]
        if self.relationships:
            result["r"] = [r.to_dict() for r in self.relationships]
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptimizedType":
        return cls(
            name=data["n"],
            fully_qualified_name=data["fqn"],
            namespace=data.get("ns", ABSENT_ID),
            kind=data["kind"],
            access=data.get("acc", ABSENT_ID),
            documentation=data.get("doc", ABSENT_ID),
            is_static=data.get("s", False),
            is_abstract=data.get("a", False),
            is_sealed=data.get("sealed", False),
            is_partial=data.get("partial", False),
            is_nested=data.get("nested", False),
            parent_type_name=data.get("parent", ABSENT_ID),
            methods=[OptimizedMethod.from_dict(m) for m in data.get("m", [])],
            properties=[OptimizedProperty.from_dict(p) for p in data.get("p", [])],
            relationships=[OptimizedRelationship.from_dict(r) for r in data.get("r", [])],
        )


@dataclass
class OptimizedFile:
    """Identifier-keyed file record."""

    path: int  # Relative path id (absolute when no relative path is known)
    absolute_path: int
    language: int
    size_bytes: int
    last_modified: datetime
    namespaces: List[int] = field(default_factory=list)
    imports: List[int] = field(default_factory=list)
    types: List[OptimizedType] = field(default_factory=list)
    has_relative_path: bool = True

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "path": self.path,
            "abs": self.absolute_path,
            "lang": self.language,
            "size": self.size_bytes,
            "mod": _format_timestamp(self.last_modified),
        }
        if self.namespaces:
            result["ns"] = list(self.namespaces)
        if self.imports:
            result["imp"] = list(self.imports)
        if self.types:
            result["types"] = [t.to_dict() for t in self.types]
        if not self.has_relative_path:
            result["norel"] = True
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptimizedFile":
        return cls(
            path=data["path"],
            absolute_path=data["abs"],
            language=data["lang"],
            size_bytes=data.get("size", 0),
            last_modified=_parse_timestamp(data["mod"]),
            namespaces=list(data.get("ns", [])),
            imports=list(data.get("imp", [])),
            types=[OptimizedType.from_dict(t) for t in data.get("types", [])],
            has_relative_path=not data.get("norel", False),
        )


@dataclass
class OptimizedCodebase:
    """Token-optimized index: identifier-keyed records plus the string table.

    Identifier i resolves to string_table[i - 1]; identifier 0 means absent.
    """

    root_directory: int
    created_at: datetime
    optimized_at: datetime
    string_table: List[str]
    files: List[OptimizedFile] = field(default_factory=list)
    failed_items: int = 0
    optimization_level: str = OPTIMIZATION_LEVEL

    @property
    def file_count(self) -> int:
        return len(self.files)

    def resolve(self, string_id: int) -> str:
        """Resolve an identifier against the string table.

        Raises:
            KeyError: If the identifier is outside the table.
        """
        if string_id == ABSENT_ID:
            return ""
        if string_id < 0 or string_id > len(self.string_table):
            raise KeyError(f"Unknown string id: {string_id}")
        return self.string_table[string_id - 1]

    def signatures(self) -> List[str]:
        """Compact signature of every method, in index order."""
        return [
            self.resolve(method.signature)
            for opt_file in self.files
            for opt_type in opt_file.types
            for method in opt_type.methods
        ]

    def expand(self) -> Codebase:
        """Rebuild a self-describing Codebase from the indexed form.

        Documentation comes back normalized; every structural field is
        restored exactly.
        """
        r = self.resolve
        files: List[SourceFile] = []
        for opt_file in self.files:
            absolute_path = r(opt_file.absolute_path)
            relative_path = r(opt_file.path)
            types = [self._expand_type(t) for t in opt_file.types]
            files.append(
                SourceFile(
                    absolute_path=absolute_path,
                    relative_path=relative_path if opt_file.has_relative_path else "",
                    language=r(opt_file.language),
                    size_bytes=opt_file.size_bytes,
                    last_modified=opt_file.last_modified,
                    namespaces=[r(ns) for ns in opt_file.namespaces],
                    imports=[r(imp) for imp in opt_file.imports],
                    types=types,
                )
            )
        return Codebase(
            root_directory=r(self.root_directory),
            created_at=self.created_at,
            files=files,
        )

    def _expand_type(self, opt_type: OptimizedType) -> TypeDefinition:
        r = self.resolve
        return TypeDefinition(
            name=r(opt_type.name),
            namespace=r(opt_type.namespace),
            kind=r(opt_type.kind),
            access=r(opt_type.access),
            is_static=opt_type.is_static,
            is_abstract=opt_type.is_abstract,
            is_sealed=opt_type.is_sealed,
            is_partial=opt_type.is_partial,
            is_nested=opt_type.is_nested,
            parent_type_name=r(opt_type.parent_type_name),
            documentation=r(opt_type.documentation),
            methods=[
                MethodDefinition(
                    name=r(m.name),
                    return_type=r(m.return_type),
                    access=r(m.access),
                    is_static=m.is_static,
                    is_virtual=m.is_virtual,
                    is_override=m.is_override,
                    is_abstract=m.is_abstract,
                    is_async=m.is_async,
                    start_line=m.start_line,
                    end_line=m.end_line,
                    documentation=r(m.documentation),
                    parameters=[
                        ParameterDefinition(
                            name=r(p.name),
                            type_name=r(p.type_name),
                            default_value="" if p.has_empty_default else (r(p.default_value) or None),
                            is_by_ref=p.is_by_ref,
                            is_out=p.is_out,
                            is_variadic=p.is_variadic,
                            is_optional=p.is_optional,
                        )
                        for p in m.parameters
                    ],
                )
                for m in opt_type.methods
            ],
            properties=[
                PropertyDefinition(
                    name=r(p.name),
                    type_name=r(p.type_name),
                    access=r(p.access),
                    is_static=p.is_static,
                    is_virtual=p.is_virtual,
                    is_override=p.is_override,
                    is_abstract=p.is_abstract,
                    has_getter=p.has_getter,
                    has_setter=p.has_setter,
                    has_private_setter=p.has_private_setter,
                    is_auto_implemented=p.is_auto_implemented,
                    start_line=p.start_line,
                    end_line=p.end_line,
                    documentation=r(p.documentation),
                )
                for p in opt_type.properties
            ],
            relationships=[
                TypeRelationship(
                    kind=r(rel.kind),
                    target_type=r(rel.target_type),
                    description=r(rel.description),
                )
                for rel in opt_type.relationships
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "optimization_level": self.optimization_level,
            "root": self.root_directory,
            "created_at": _format_timestamp(self.created_at),
            "optimized_at": _format_timestamp(self.optimized_at),
            "file_count": self.file_count,
            "failed_items": self.failed_items,
            "strings": list(self.string_table),
            "files": [f.to_dict() for f in self.files],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptimizedCodebase":
        """Deserialize from JSON-compatible dict.

        Raises:
            KeyError: If required fields are missing from data dict.
        """
        return cls(
            root_directory=data["root"],
            created_at=_parse_timestamp(data["created_at"]),
            optimized_at=_parse_timestamp(data["optimized_at"]),
            string_table=list(data["strings"]),
            files=[OptimizedFile.from_dict(f) for f in data.get("files", [])],
            failed_items=data.get("failed_items", 0),
            optimization_level=data.get("optimization_level", OPTIMIZATION_LEVEL),
        )


class TokenOptimizer:
    """Compacts an entity graph into a token-efficient form.

    Each optimize() call is one interning session: the interner is reset at
    the start so identifiers never leak across unrelated runs. Identifier
    assignment follows traversal order, so a fixed file order gives
    byte-identical output.

    Error handling:
    - A None codebase raises ValueError before anything is touched.
    - A failure confined to one type is logged and counted; the remaining
      types are still processed.
    """

    def optimize(
        self, codebase: Codebase, interner: Optional[StringInterner] = None
    ) -> OptimizedCodebase:
        """Build an identifier-keyed index from a codebase.

        Args:
            codebase: Fully populated codebase. Not modified.
            interner: Session to intern into. A fresh one is used if None.
                The session is reset before use.

        Returns:
            OptimizedCodebase carrying the exported string table.

        Raises:
            ValueError: If codebase is None.
        """
        if codebase is None:
            raise ValueError("codebase must not be None")

        session = interner if interner is not None else StringInterner()
        session.reset()

        failed_items = 0
        root_id = session.intern(codebase.root_directory)
        optimized_files: List[OptimizedFile] = []

        for source_file in codebase.files:
            opt_file = OptimizedFile(
                path=session.intern(source_file.path),
                absolute_path=session.intern(source_file.absolute_path),
                language=session.intern(source_file.language),
                size_bytes=source_file.size_bytes,
                last_modified=source_file.last_modified,
                namespaces=[session.intern(ns) for ns in source_file.namespaces],
                imports=[session.intern(imp) for imp in source_file.imports],
                has_relative_path=bool(source_file.relative_path),
            )
            for type_def in source_file.types:
                try:
                    opt_file.types.append(self._optimize_type(type_def, session))
                except Exception as e:
                    failed_items += 1
                    logger.error(
                        f"Failed to optimize type '{getattr(type_def, 'name', type_def)}' "
                        f"in {source_file.path}: {e}"
                    )
            optimized_files.append(opt_file)

        result = OptimizedCodebase(
            root_directory=root_id,
            created_at=codebase.created_at,
            optimized_at=utc_now(),
            string_table=session.export_table(),
            files=optimized_files,
            failed_items=failed_items,
        )
        logger.debug(
            f"Optimized {result.file_count} files into {len(result.string_table)} "
            f"distinct strings ({failed_items} failed items)"
        )
        return result

    def optimize_in_place(self, codebase: Codebase) -> int:
        """Normalize documentation on the codebase itself.

        Only documentation text on types, methods and properties changes;
        names, signatures, flags and line numbers are left untouched.

        Args:
            codebase: Codebase to rewrite.

        Returns:
            Number of documentation fields whose text changed.

        Raises:
            ValueError: If codebase is None.
        """
        if codebase is None:
            raise ValueError("codebase must not be None")

        changed = 0
        failed = 0
        for type_def in codebase.all_types:
            try:
                changed += self._normalize_type_documentation(type_def)
            except Exception as e:
                failed += 1
                logger.error(
                    f"Failed to optimize documentation for "
                    f"'{getattr(type_def, 'name', type_def)}': {e}"
                )

        if failed:
            logger.warning(f"In-place optimization skipped {failed} types after errors")
        logger.debug(f"Normalized {changed} documentation fields in place")
        return changed

    def _normalize_type_documentation(self, type_def: TypeDefinition) -> int:
        changed = 0
        members: List[Any] = [type_def, *type_def.methods, *type_def.properties]
        for member in members:
            normalized = normalize_documentation(member.documentation)
            if normalized != member.documentation:
                member.documentation = normalized
                changed += 1
        return changed

    def _optimize_type(self, type_def: TypeDefinition, session: StringInterner) -> OptimizedType:
        documentation = session.intern(normalize_documentation(type_def.documentation))

        return OptimizedType(
            documentation=documentation,
            name=session.intern(type_def.name),
            fully_qualified_name=session.intern(type_def.fully_qualified_name),
            namespace=session.intern(type_def.namespace),
            kind=session.intern(type_def.kind),
            access=session.intern(type_def.access),
            is_static=type_def.is_static,
            is_abstract=type_def.is_abstract,
            is_sealed=type_def.is_sealed,
            is_partial=type_def.is_partial,
            is_nested=type_def.is_nested,
            parent_type_name=session.intern(type_def.parent_type_name),
            methods=[self._optimize_method(m, session) for m in type_def.methods],
            properties=[self._optimize_property(p, session) for p in type_def.properties],
            relationships=[
                OptimizedRelationship(
                    kind=session.intern(rel.kind),
                    target_type=session.intern(rel.target_type),
                    description=session.intern(rel.description),
                )
                for rel in type_def.relationships
            ],
        )

    def _optimize_method(self, method: MethodDefinition, session: StringInterner) -> OptimizedMethod:
        documentation = session.intern(normalize_documentation(method.documentation))
        signature = session.intern(compact_signature(method))

        return OptimizedMethod(
            documentation=documentation,
            signature=signature,
            name=session.intern(method.name),
            return_type=session.intern(method.return_type),
            access=session.intern(method.access),
            is_static=method.is_static,
            is_virtual=method.is_virtual,
            is_override=method.is_override,
            is_abstract=method.is_abstract,
            is_async=method.is_async,
            start_line=method.start_line,
            end_line=method.end_line,
            parameters=[
                OptimizedParameter(
                    name=session.intern(p.name),
                    type_name=session.intern(p.type_name),
                    default_value=session.intern(p.default_value),
                    is_by_ref=p.is_by_ref,
                    is_out=p.is_out,
                    is_variadic=p.is_variadic,
                    is_optional=p.is_optional,
                    has_empty_default=p.default_value == "",
                )
                for p in method.parameters
            ],
        )

    def _optimize_property(
        self, prop: PropertyDefinition, session: StringInterner
    ) -> OptimizedProperty:
        documentation = session.intern(normalize_documentation(prop.documentation))

        return OptimizedProperty(
            documentation=documentation,
            name=session.intern(prop.name),
            type_name=session.intern(prop.type_name),
            access=session.intern(prop.access),
            is_static=prop.is_static,
            is_virtual=prop.is_virtual,
            is_override=prop.is_override,
            is_abstract=prop.is_abstract,
            has_getter=prop.has_getter,
            has_setter=prop.has_setter,
            has_private_setter=prop.has_private_setter,
            is_auto_implemented=prop.is_auto_implemented,
            start_line=prop.start_line,
            end_line=prop.end_line,
        )

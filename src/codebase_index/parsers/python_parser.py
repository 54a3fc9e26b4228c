# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Python module parser built on the standard ast module.

Maps the declarations of one Python module onto the entity model:
- Module path relative to the root -> namespace ("pkg/sub/mod.py" -> "pkg.sub.mod")
- import / from-import statements -> imports (relative imports keep their dots)
- class statements -> TypeDefinition
  - Enum family bases -> kind "enum", Protocol -> kind "interface"
  - ABC base, ABCMeta metaclass or any abstract member -> is_abstract
  - typing.final -> is_sealed
  - classes declared in a class body -> nested, parent named by parent_type_name
  - each base -> relationship ("implementation" for Protocol/ABC)
- def / async def in a class body -> MethodDefinition
- @property (with optional setter) and annotated class attributes -> PropertyDefinition
- enum members -> static PropertyDefinition typed as the enum

Python has no declared access modifiers, so access is read from naming:
``__name`` private, ``_name`` protected, everything else (dunders included)
public. Unannotated parameters and returns are typed "Any".
"""

import ast
import logging
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from codebase_index.models import (
    AccessLevel,
    MethodDefinition,
    ParameterDefinition,
    PropertyDefinition,
    RelationshipKind,
    SourceFile,
    TypeDefinition,
    TypeKind,
    TypeRelationship,
)
from codebase_index.parsers.base import LanguageParser, ParseError

logger = logging.getLogger(__name__)

FunctionNode = Union[ast.FunctionDef, ast.AsyncFunctionDef]

UNKNOWN_TYPE = "Any"

ENUM_BASES = {"Enum", "IntEnum", "StrEnum", "Flag", "IntFlag", "ReprEnum"}
INTERFACE_BASES = {"Protocol"}
ABSTRACT_BASES = {"ABC"}
IGNORED_BASES = {"object", "Generic"}

_PROPERTY_DECORATORS = {"property", "cached_property", "abstractproperty"}
_STATIC_DECORATORS = {"staticmethod", "classmethod"}
_IMPLICIT_FIRST_ARGS = {"self", "cls", "mcs", "metacls"}


def access_from_name(name: str) -> str:
    """Derive an access level from Python naming convention."""
    if name.startswith("__") and name.endswith("__"):
        return AccessLevel.PUBLIC
    if name.startswith("__"):
        return AccessLevel.PRIVATE
    if name.startswith("_"):
        return AccessLevel.PROTECTED
    return AccessLevel.PUBLIC


def _simple_name(node: ast.expr) -> str:
    """Last dotted component of a name, attribute or subscript expression."""
    if isinstance(node, ast.Subscript):
        return _simple_name(node.value)
    if isinstance(node, ast.Attribute):
        return node.attr
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Call):
        return _simple_name(node.func)
    return ""


def _decorator_names(node: Union[FunctionNode, ast.ClassDef]) -> Set[str]:
    return {_simple_name(d) for d in node.decorator_list}


def _annotation_text(annotation: Optional[ast.expr]) -> str:
    if annotation is None:
        return UNKNOWN_TYPE
    return ast.unparse(annotation)


def _docstring(node: Union[FunctionNode, ast.ClassDef]) -> str:
    """Docstring of node, with lone surrogates (from escapes such as "\\ud800") replaced."""
    text = ast.get_docstring(node) or ""
    return text.encode("utf-8", "replace").decode("utf-8")


class PythonParser(LanguageParser):
    """LanguageParser for Python source files.

    Stateless between calls, so one instance may serve several worker threads.
    """

    def __init__(self, include_private_members: bool = False, include_protected_members: bool = True):
        """Initialize PythonParser.

        Args:
            include_private_members: Keep ``__name`` methods and properties.
            include_protected_members: Keep ``_name`` methods and properties.
        """
        self.include_private_members = include_private_members
        self.include_protected_members = include_protected_members

    def name(self) -> str:
        return "PythonParser"

    def language(self) -> str:
        return "python"

    def supported_extensions(self) -> List[str]:
        return [".py", ".pyi"]

    def parse_file(self, file_path: str, source: str, root_directory: str) -> SourceFile:
        try:
            module = ast.parse(source, filename=file_path)
        except SyntaxError as e:
            raise ParseError(
                f"Syntax error in {file_path} at line {e.lineno}: {e.msg}",
                file_path=file_path,
                line=e.lineno or 0,
            ) from e
        except ValueError as e:
            # Source containing null bytes
            raise ParseError(f"Cannot parse {file_path}: {e}", file_path=file_path) from e

        relative_path = self._relative_path(file_path, root_directory)
        namespace = self._module_name(relative_path)

        types: List[TypeDefinition] = []
        for node in module.body:
            if isinstance(node, ast.ClassDef):
                self._collect_class(node, namespace, None, types)

        logger.debug(f"Parsed {relative_path}: {len(types)} types")
        return SourceFile(
            absolute_path=str(Path(file_path).resolve()),
            relative_path=relative_path,
            language=self.language(),
            size_bytes=len(source.encode("utf-8", errors="replace")),
            namespaces=[namespace] if namespace else [],
            imports=self._collect_imports(module),
            types=types,
        )

    @staticmethod
    def _relative_path(file_path: str, root_directory: str) -> str:
        path = Path(file_path).resolve()
        try:
            return path.relative_to(Path(root_directory).resolve()).as_posix()
        except ValueError:
            return path.name

    @staticmethod
    def _module_name(relative_path: str) -> str:
        parts = list(Path(relative_path).with_suffix("").parts)
        if parts and parts[-1] == "__init__":
            parts.pop()
        return ".".join(parts)

    @staticmethod
    def _collect_imports(module: ast.Module) -> List[str]:
        imports: List[str] = []
        seen: Set[str] = set()
        for node in ast.walk(module):
            names: List[str] = []
            if isinstance(node, ast.Import):
                names = [alias.name for alias in node.names]
            elif isinstance(node, ast.ImportFrom):
                names = ["." * node.level + (node.module or "")]
            for name in names:
                if name and name not in seen:
                    seen.add(name)
                    imports.append(name)
        return imports

    def _is_included(self, name: str) -> bool:
        access = access_from_name(name)
        if access == AccessLevel.PRIVATE:
            return self.include_private_members
        if access == AccessLevel.PROTECTED:
            return self.include_protected_members
        return True

    def _collect_class(
        self,
        node: ast.ClassDef,
        namespace: str,
        parent: Optional[ast.ClassDef],
        types: List[TypeDefinition],
    ) -> None:
        """Append the type for node, then its nested types, to types."""
        base_names = [_simple_name(base) for base in node.bases]

        if any(name in ENUM_BASES for name in base_names):
            kind = TypeKind.ENUM
        elif any(name in INTERFACE_BASES for name in base_names):
            kind = TypeKind.INTERFACE
        else:
            kind = TypeKind.CLASS

        metaclass_abstract = any(
            keyword.arg == "metaclass" and _simple_name(keyword.value) == "ABCMeta"
            for keyword in node.keywords
        )

        type_def = TypeDefinition(
            name=node.name,
            namespace=namespace,
            kind=kind,
            access=access_from_name(node.name),
            is_sealed="final" in _decorator_names(node),
            is_nested=parent is not None,
            parent_type_name=parent.name if parent is not None else "",
            documentation=_docstring(node),
            relationships=self._collect_relationships(node),
        )

        properties: Dict[str, PropertyDefinition] = {}
        nested: List[ast.ClassDef] = []

        for item in node.body:
            if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef)):
                self._collect_function(item, type_def, properties)
            elif isinstance(item, ast.AnnAssign) and isinstance(item.target, ast.Name):
                self._collect_attribute(item, properties)
            elif kind == TypeKind.ENUM and isinstance(item, ast.Assign):
                self._collect_enum_members(item, node.name, properties)
            elif isinstance(item, ast.ClassDef):
                nested.append(item)

        type_def.properties = list(properties.values())
        type_def.is_abstract = (
            metaclass_abstract
            or any(name in ABSTRACT_BASES for name in base_names)
            or any(m.is_abstract for m in type_def.methods)
            or any(p.is_abstract for p in type_def.properties)
        )

        types.append(type_def)
        for child in nested:
            self._collect_class(child, namespace, node, types)

    @staticmethod
    def _collect_relationships(node: ast.ClassDef) -> List[TypeRelationship]:
        relationships: List[TypeRelationship] = []
        for base in node.bases:
            simple = _simple_name(base)
            if not simple or simple in IGNORED_BASES:
                continue
            if simple in INTERFACE_BASES or simple in ABSTRACT_BASES:
                kind = RelationshipKind.IMPLEMENTATION
            else:
                kind = RelationshipKind.INHERITANCE
            relationships.append(TypeRelationship(kind=kind, target_type=ast.unparse(base)))
        return relationships

    def _collect_function(
        self,
        item: FunctionNode,
        type_def: TypeDefinition,
        properties: Dict[str, PropertyDefinition],
    ) -> None:
        decorators = _decorator_names(item)
        is_abstract = "abstractmethod" in decorators or "abstractproperty" in decorators

        # @name.setter / @name.deleter extend a property declared above
        for decorator in item.decorator_list:
            if isinstance(decorator, ast.Attribute) and decorator.attr in ("setter", "deleter"):
                existing = properties.get(item.name)
                if existing is not None:
                    if decorator.attr == "setter":
                        existing.has_setter = True
                    existing.end_line = item.end_lineno or existing.end_line
                return

        if not self._is_included(item.name):
            return

        if decorators & _PROPERTY_DECORATORS:
            properties[item.name] = PropertyDefinition(
                name=item.name,
                type_name=_annotation_text(item.returns),
                access=access_from_name(item.name),
                is_abstract=is_abstract,
                is_override="override" in decorators,
                has_getter=True,
                has_setter=False,
                start_line=item.lineno,
                end_line=item.end_lineno or item.lineno,
                documentation=_docstring(item),
            )
            return

        is_static = bool(decorators & _STATIC_DECORATORS)
        type_def.methods.append(
            MethodDefinition(
                name=item.name,
                return_type=_annotation_text(item.returns),
                access=access_from_name(item.name),
                is_static=is_static,
                is_override="override" in decorators,
                is_abstract=is_abstract,
                is_async=isinstance(item, ast.AsyncFunctionDef),
                start_line=item.lineno,
                end_line=item.end_lineno or item.lineno,
                documentation=_docstring(item),
                parameters=self._collect_parameters(item.args, "staticmethod" in decorators),
            )
        )

    @staticmethod
    def _collect_parameters(args: ast.arguments, is_staticmethod: bool) -> List[ParameterDefinition]:
        parameters: List[ParameterDefinition] = []

        positional = list(args.posonlyargs) + list(args.args)
        # Defaults align with the trailing positional parameters
        defaults: List[Optional[ast.expr]] = [None] * (len(positional) - len(args.defaults))
        defaults.extend(args.defaults)

        for index, (arg, default) in enumerate(zip(positional, defaults)):
            if index == 0 and not is_staticmethod and arg.arg in _IMPLICIT_FIRST_ARGS:
                continue
            parameters.append(
                ParameterDefinition(
                    name=arg.arg,
                    type_name=_annotation_text(arg.annotation),
                    default_value=ast.unparse(default) if default is not None else None,
                    is_optional=default is not None,
                )
            )

        if args.vararg is not None:
            parameters.append(
                ParameterDefinition(
                    name=args.vararg.arg,
                    type_name=_annotation_text(args.vararg.annotation),
                    is_variadic=True,
                )
            )

        for arg, kw_default in zip(args.kwonlyargs, args.kw_defaults):
            parameters.append(
                ParameterDefinition(
                    name=arg.arg,
                    type_name=_annotation_text(arg.annotation),
                    default_value=ast.unparse(kw_default) if kw_default is not None else None,
                    is_optional=kw_default is not None,
                )
            )

        if args.kwarg is not None:
            parameters.append(
                ParameterDefinition(
                    name=args.kwarg.arg,
                    type_name=_annotation_text(args.kwarg.annotation),
                    is_variadic=True,
                )
            )

        return parameters

    def _collect_attribute(self, item: ast.AnnAssign, properties: Dict[str, PropertyDefinition]) -> None:
        name = item.target.id  # type: ignore[union-attr]
        if not self._is_included(name):
            return
        is_class_var = _simple_name(item.annotation) == "ClassVar"
        properties[name] = PropertyDefinition(
            name=name,
            type_name=ast.unparse(item.annotation),
            access=access_from_name(name),
            is_static=is_class_var,
            has_getter=True,
            has_setter=True,
            is_auto_implemented=True,
            start_line=item.lineno,
            end_line=item.end_lineno or item.lineno,
        )

    def _collect_enum_members(
        self, item: ast.Assign, enum_name: str, properties: Dict[str, PropertyDefinition]
    ) -> None:
        for target in item.targets:
            if not isinstance(target, ast.Name) or not self._is_included(target.id):
                continue
            properties[target.id] = PropertyDefinition(
                name=target.id,
                type_name=enum_name,
                access=access_from_name(target.id),
                is_static=True,
                has_getter=True,
                has_setter=False,
                is_auto_implemented=True,
                start_line=item.lineno,
                end_line=item.end_lineno or item.lineno,
            )

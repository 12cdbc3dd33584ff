"""
Java source parser for KodeGraph.

Turns one .java file into a TypeEntity (with nested MethodEntity and
FieldEntity records) using the tree-sitter Java grammar. Only the first
top-level declaration of a file is extracted. Documentation-only files
(package-info.java, module-info.java, files without any declaration) are
skipped rather than reported as failures.

Batch parsing absorbs per-file failures: parse_files returns the entities
it could build plus a map of failed paths to error messages.
"""

import threading
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import tree_sitter
import tree_sitter_java

from .entities import (
    ENUM_CONSTANT_TYPE,
    FieldEntity,
    MethodEntity,
    Parameter,
    TypeEntity,
    TypeKind,
)

log = structlog.get_logger()

JAVA_LANGUAGE = tree_sitter.Language(tree_sitter_java.language())

SKIPPED_FILE_NAMES = frozenset({"package-info.java", "module-info.java"})

_DECLARATION_KINDS = {
    "class_declaration": TypeKind.CLASS,
    "record_declaration": TypeKind.CLASS,
    "interface_declaration": TypeKind.INTERFACE,
    "enum_declaration": TypeKind.ENUM,
    "annotation_type_declaration": TypeKind.ANNOTATION,
}

# First class/interface wins over an enum, which wins over an annotation type
_DECLARATION_PRIORITY = {
    TypeKind.CLASS: 0,
    TypeKind.INTERFACE: 0,
    TypeKind.ENUM: 1,
    TypeKind.ANNOTATION: 2,
}


class ParseError(Exception):
    """Raised when a single source file cannot be turned into a TypeEntity."""

    def __init__(self, file_path: str, message: str):
        super().__init__(f"{file_path}: {message}")
        self.file_path = file_path
        self.message = message


class SkippedFile(Exception):
    """Raised for files that hold no declaration worth indexing."""

    pass


@dataclass
class ParseBatchResult:
    """Outcome of parsing a batch of files."""

    entities: list[TypeEntity] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)


def _text(node: Any) -> str:
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def _line(node: Any) -> int:
    return node.start_point[0] + 1


def _end_line(node: Any) -> int:
    return node.end_point[0] + 1


def _new_id() -> str:
    return str(uuid.uuid4())


def _simple_type_name(node: Any) -> str:
    """Type name without generics or package qualification."""
    if node is None:
        return ""
    if node.type == "generic_type":
        return _simple_type_name(node.named_children[0])
    if node.type == "scoped_type_identifier":
        identifiers = [c for c in node.named_children if c.type == "type_identifier"]
        return _text(identifiers[-1]) if identifiers else _text(node)
    return _text(node)


def _annotations(declaration: Any) -> list[str]:
    """Annotation markers such as "@Service" from a declaration's modifiers."""
    names: list[str] = []
    for child in declaration.children:
        if child.type != "modifiers":
            continue
        for modifier in child.named_children:
            if modifier.type in ("marker_annotation", "annotation"):
                names.append("@" + _text(modifier.child_by_field_name("name")))
    return names


def _type_list(node: Any) -> list[str]:
    """Simple names from an implements/extends clause."""
    if node is None:
        return []
    names: list[str] = []
    for child in node.named_children:
        if child.type == "type_list":
            names.extend(_simple_type_name(t) for t in child.named_children)
        else:
            names.append(_simple_type_name(child))
    return names


class JavaSourceParser:
    """Extract typed entities from Java source files."""

    def __init__(self, strict: bool = True):
        """Initialize the parser.

        Args:
            strict: Treat files containing syntax errors as failures. When
                False, declarations are extracted from whatever tree-sitter
                could recover.
        """
        self.strict = strict
        self._local = threading.local()

    def _parser(self) -> tree_sitter.Parser:
        # tree-sitter parsers are not safe to share between threads
        parser = getattr(self._local, "parser", None)
        if parser is None:
            parser = tree_sitter.Parser(JAVA_LANGUAGE)
            self._local.parser = parser
        return parser

    def parse_source(self, source: str | bytes, file_path: str, repository_id: str) -> TypeEntity:
        """Parse Java source text into a TypeEntity.

        Args:
            source: File content
            file_path: Path relative to the repository root (posix separators)
            repository_id: Owning repository id

        Returns:
            TypeEntity for the first top-level declaration

        Raises:
            SkippedFile: If the file holds no declaration
            ParseError: If the file cannot be parsed
        """
        if Path(file_path).name in SKIPPED_FILE_NAMES:
            raise SkippedFile(file_path)

        content = source.encode("utf-8") if isinstance(source, str) else source
        tree = self._parser().parse(content)
        root = tree.root_node

        declaration = self._primary_declaration(root)
        if declaration is None:
            if root.has_error:
                raise ParseError(file_path, "syntax error and no recognizable declaration")
            raise SkippedFile(file_path)
        if self.strict and root.has_error:
            raise ParseError(file_path, f"syntax error near line {self._first_error_line(root)}")

        return self._build_type(declaration, root, file_path, repository_id)

    def parse_file(self, path: Path, root_dir: Path, repository_id: str) -> TypeEntity:
        """Parse one file on disk.

        Raises:
            SkippedFile: If the file holds no declaration
            ParseError: If the file cannot be read or parsed
        """
        relative = path.relative_to(root_dir).as_posix()
        try:
            content = path.read_bytes()
        except OSError as e:
            raise ParseError(relative, f"cannot read file: {e}") from e
        return self.parse_source(content, relative, repository_id)

    def parse_files(
        self, paths: Iterable[Path], root_dir: Path, repository_id: str
    ) -> ParseBatchResult:
        """Parse a batch of files; one bad file never aborts the batch.

        Args:
            paths: Absolute paths of source files
            root_dir: Repository root the file paths are made relative to
            repository_id: Owning repository id

        Returns:
            ParseBatchResult with entities, failures and skipped files
        """
        result = ParseBatchResult()
        for path in paths:
            try:
                result.entities.append(self.parse_file(path, root_dir, repository_id))
            except SkippedFile as skipped:
                result.skipped.append(str(skipped))
            except ParseError as e:
                log.warning("parser.file_failed", file=e.file_path, error=e.message)
                result.failures[e.file_path] = e.message
            except Exception as e:
                relative = path.relative_to(root_dir).as_posix()
                log.warning("parser.file_failed", file=relative, error=str(e))
                result.failures[relative] = str(e)

        log.info(
            "parser.batch_complete",
            repository_id=repository_id,
            parsed=len(result.entities),
            failed=len(result.failures),
            skipped=len(result.skipped),
        )
        return result

    # ------------------------------------------------------------------
    # Tree walking
    # ------------------------------------------------------------------

    @staticmethod
    def _primary_declaration(root: Any) -> Any:
        best = None
        for child in root.named_children:
            kind = _DECLARATION_KINDS.get(child.type)
            if kind is None:
                continue
            if best is None or _DECLARATION_PRIORITY[kind] < _DECLARATION_PRIORITY[
                _DECLARATION_KINDS[best.type]
            ]:
                best = child
        return best

    @staticmethod
    def _first_error_line(root: Any) -> int:
        stack = [root]
        while stack:
            node = stack.pop()
            if node.type == "ERROR" or node.is_missing:
                return _line(node)
            stack.extend(reversed(node.children))
        return _line(root)

    @staticmethod
    def _package_name(root: Any) -> str:
        for child in root.named_children:
            if child.type == "package_declaration":
                for part in child.named_children:
                    if part.type in ("scoped_identifier", "identifier"):
                        return _text(part)
        return ""

    def _build_type(
        self, declaration: Any, root: Any, file_path: str, repository_id: str
    ) -> TypeEntity:
        kind = _DECLARATION_KINDS[declaration.type]
        name = _text(declaration.child_by_field_name("name"))
        package_name = self._package_name(root)
        fqn = f"{package_name}.{name}" if package_name else name

        superclass = None
        interfaces: list[str] = []
        if declaration.type == "class_declaration":
            extended = _type_list(declaration.child_by_field_name("superclass"))
            superclass = extended[0] if extended else None
            interfaces = _type_list(declaration.child_by_field_name("interfaces"))
        elif declaration.type in ("enum_declaration", "record_declaration"):
            interfaces = _type_list(declaration.child_by_field_name("interfaces"))
        elif declaration.type == "interface_declaration":
            for child in declaration.named_children:
                if child.type == "extends_interfaces":
                    interfaces = _type_list(child)

        methods: list[MethodEntity] = []
        fields: list[FieldEntity] = []
        body = declaration.child_by_field_name("body")
        if body is not None:
            self._collect_members(body, methods, fields)

        return TypeEntity(
            id=_new_id(),
            repository_id=repository_id,
            name=name,
            package_name=package_name,
            fully_qualified_name=fqn,
            file_path=file_path,
            kind=kind,
            annotations=_annotations(declaration),
            superclass=superclass,
            interfaces=interfaces,
            methods=methods,
            fields=fields,
            start_line=_line(declaration),
            end_line=_end_line(declaration),
            source_code=_text(declaration),
        )

    def _collect_members(
        self, body: Any, methods: list[MethodEntity], fields: list[FieldEntity]
    ) -> None:
        # Direct members only; nested types and constructors are not extracted
        for member in body.named_children:
            if member.type == "method_declaration":
                methods.append(self._build_method(member))
            elif member.type == "annotation_type_element_declaration":
                methods.append(self._build_annotation_element(member))
            elif member.type in ("field_declaration", "constant_declaration"):
                fields.extend(self._build_fields(member))
            elif member.type == "enum_constant":
                fields.append(
                    FieldEntity(
                        id=_new_id(),
                        name=_text(member.child_by_field_name("name")),
                        type=ENUM_CONSTANT_TYPE,
                        annotations=_annotations(member),
                        start_line=_line(member),
                        end_line=_end_line(member),
                    )
                )
            elif member.type == "enum_body_declarations":
                self._collect_members(member, methods, fields)

    def _build_method(self, node: Any) -> MethodEntity:
        name = _text(node.child_by_field_name("name"))
        return_type = _text(node.child_by_field_name("type")) or "void"
        parameters = self._parameters(node.child_by_field_name("parameters"))
        params_text = ", ".join(f"{p.type} {p.name}" for p in parameters)

        return MethodEntity(
            id=_new_id(),
            name=name,
            signature=f"{return_type} {name}({params_text})",
            return_type=return_type,
            parameters=parameters,
            annotations=_annotations(node),
            calls=self._method_calls(node.child_by_field_name("body")),
            start_line=_line(node),
            end_line=_end_line(node),
            source_code=_text(node),
        )

    def _build_annotation_element(self, node: Any) -> MethodEntity:
        name = _text(node.child_by_field_name("name"))
        return_type = _text(node.child_by_field_name("type"))
        return MethodEntity(
            id=_new_id(),
            name=name,
            signature=f"{return_type} {name}()",
            return_type=return_type,
            annotations=_annotations(node),
            start_line=_line(node),
            end_line=_end_line(node),
            source_code=_text(node),
        )

    @staticmethod
    def _parameters(node: Any) -> list[Parameter]:
        if node is None:
            return []
        parameters: list[Parameter] = []
        for child in node.named_children:
            if child.type == "formal_parameter":
                type_text = _text(child.child_by_field_name("type"))
                dimensions = child.child_by_field_name("dimensions")
                if dimensions is not None:
                    type_text += _text(dimensions)
                parameters.append(
                    Parameter(name=_text(child.child_by_field_name("name")), type=type_text)
                )
            elif child.type == "spread_parameter":
                type_node = next(
                    (c for c in child.named_children if c.type not in ("modifiers", "variable_declarator")),
                    None,
                )
                declarator = next(
                    (c for c in child.named_children if c.type == "variable_declarator"), None
                )
                name_node = declarator.child_by_field_name("name") if declarator else None
                parameters.append(Parameter(name=_text(name_node), type=f"{_text(type_node)}..."))
        return parameters

    @staticmethod
    def _method_calls(body: Any) -> list[str]:
        """Distinct simple names of methods invoked in a body, in source order."""
        if body is None:
            return []
        calls: dict[str, None] = {}
        stack = [body]
        while stack:
            node = stack.pop()
            if node.type == "method_invocation":
                name = _text(node.child_by_field_name("name"))
                if name:
                    calls.setdefault(name, None)
            stack.extend(reversed(node.named_children))
        return list(calls)

    @staticmethod
    def _build_fields(node: Any) -> list[FieldEntity]:
        type_text = _text(node.child_by_field_name("type"))
        annotations = _annotations(node)
        return [
            FieldEntity(
                id=_new_id(),
                name=_text(declarator.child_by_field_name("name")),
                type=type_text,
                annotations=list(annotations),
                start_line=_line(declarator),
                end_line=_end_line(declarator),
            )
            for declarator in node.children_by_field_name("declarator")
        ]

"""
Typed entity records for KodeGraph.

The parser produces TypeEntity trees (with nested MethodEntity and
FieldEntity records); the graph store persists them and hands back
CodeEntity read views. These are plain dataclasses so that parsing and
enrichment never depend on the storage layer.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

ENUM_CONSTANT_TYPE = "ENUM_CONSTANT"


class InvalidRequestError(ValueError):
    """Raised for malformed caller input (empty query or URL, bad depth, unknown id)."""

    pass


class TypeKind(str, Enum):
    """Kind of a top-level type declaration."""

    CLASS = "CLASS"
    INTERFACE = "INTERFACE"
    ENUM = "ENUM"
    ANNOTATION = "ANNOTATION"


class EntityType(str, Enum):
    """Entity types as exposed to search and graph consumers."""

    CLASS = "CLASS"
    INTERFACE = "INTERFACE"
    ENUM = "ENUM"
    ANNOTATION = "ANNOTATION"
    METHOD = "METHOD"
    FIELD = "FIELD"
    ANNOTATION_REF = "ANNOTATION_REF"

    @property
    def is_type(self) -> bool:
        return self in TYPE_ENTITY_TYPES


TYPE_ENTITY_TYPES = frozenset(
    {EntityType.CLASS, EntityType.INTERFACE, EntityType.ENUM, EntityType.ANNOTATION}
)


class RelationshipType(str, Enum):
    DECLARES = "DECLARES"
    ANNOTATED_BY = "ANNOTATED_BY"
    CALLS = "CALLS"


class RelationshipDirection(str, Enum):
    INCOMING = "INCOMING"
    OUTGOING = "OUTGOING"
    BOTH = "BOTH"


@dataclass(frozen=True)
class Parameter:
    """A method parameter (name + declared type)."""

    name: str
    type: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "type": self.type}


@dataclass
class FieldEntity:
    """A declared field or enum constant."""

    id: str
    name: str
    type: str
    annotations: list[str] = field(default_factory=list)
    start_line: int = 0
    end_line: int = 0

    @property
    def is_enum_constant(self) -> bool:
        return self.type == ENUM_CONSTANT_TYPE


@dataclass
class MethodEntity:
    """A declared method with its call targets (unresolved simple names)."""

    id: str
    name: str
    signature: str
    return_type: str
    parameters: list[Parameter] = field(default_factory=list)
    annotations: list[str] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)
    start_line: int = 0
    end_line: int = 0
    source_code: str = ""
    description: str = ""
    embedding: list[float] | None = None


@dataclass
class TypeEntity:
    """A class, interface, enum or annotation declaration and its members."""

    id: str
    repository_id: str
    name: str
    package_name: str
    fully_qualified_name: str
    file_path: str
    kind: TypeKind
    annotations: list[str] = field(default_factory=list)
    superclass: str | None = None
    interfaces: list[str] = field(default_factory=list)
    methods: list[MethodEntity] = field(default_factory=list)
    fields: list[FieldEntity] = field(default_factory=list)
    start_line: int = 0
    end_line: int = 0
    source_code: str = ""
    description: str = ""
    embedding: list[float] | None = None

    @property
    def entity_count(self) -> int:
        """Type node plus its methods and fields."""
        return 1 + len(self.methods) + len(self.fields)

    @property
    def relationship_count(self) -> int:
        """DECLARES and ANNOTATED_BY edges this type contributes (CALLS excluded)."""
        count = len(self.methods) + len(self.fields) + len(self.annotations)
        count += sum(len(m.annotations) for m in self.methods)
        count += sum(len(f.annotations) for f in self.fields)
        return count


@dataclass
class CodeEntity:
    """Read view of any stored entity, as returned by graph store queries."""

    id: str
    entity_type: EntityType
    repository_id: str
    name: str
    fully_qualified_name: str | None = None
    file_path: str | None = None
    start_line: int = 0
    end_line: int = 0
    source_code: str | None = None
    description: str | None = None
    signature: str | None = None
    declared_type: str | None = None
    annotations: list[str] = field(default_factory=list)
    owner_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type.value,
            "repository_id": self.repository_id,
            "name": self.name,
            "fully_qualified_name": self.fully_qualified_name,
            "file_path": self.file_path,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "signature": self.signature,
            "declared_type": self.declared_type,
            "annotations": list(self.annotations),
            "owner_id": self.owner_id,
        }

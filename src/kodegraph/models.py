"""
Database models for KodeGraph using SQLModel.

This module defines the persistent shape of the code knowledge graph:
repository records, type/method/field/annotation nodes and the edges
between them. Uses SQLModel for type-safe ORM with SQLite backend.
Embedding vectors and list-valued attributes are stored as JSON columns.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def _new_id() -> str:
    return str(uuid.uuid4())


class RepositoryRecord(SQLModel, table=True):
    """
    Repository record representing one indexed (url, branch) pair.

    The normalized URL plus branch is the natural key; the id is a
    generated UUID that stays stable across reindexes.
    """

    __table_args__ = (UniqueConstraint("normalized_url", "branch"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    url: str = Field(description="Repository URL as supplied by the caller")
    normalized_url: str = Field(
        index=True, description="Canonical URL used for deduplication"
    )
    branch: str = Field(default="main", description="Indexed branch")
    language: str = Field(default="Java")
    last_indexed_commit: Optional[str] = Field(
        default=None, description="Commit hash of the last successful index"
    )
    last_indexed_at: Optional[datetime] = Field(
        default=None, description="Timestamp of the last successful index"
    )


class TypeNode(SQLModel, table=True):
    """A class, interface, enum or annotation declaration."""

    id: str = Field(default_factory=_new_id, primary_key=True)
    repository_id: str = Field(foreign_key="repositoryrecord.id", index=True)
    name: str = Field(index=True)
    package_name: str = Field(default="")
    fully_qualified_name: str = Field(index=True)
    file_path: str = Field(index=True, description="Relative to the repository root")
    kind: str = Field(description="CLASS, INTERFACE, ENUM or ANNOTATION")
    annotations: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    superclass: Optional[str] = Field(default=None)
    interfaces: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    start_line: int = Field(default=0)
    end_line: int = Field(default=0)
    source_code: str = Field(default="", sa_column=Column(Text))
    description: str = Field(default="", sa_column=Column(Text))
    embedding: Optional[list[float]] = Field(default=None, sa_column=Column(JSON))


class MethodNode(SQLModel, table=True):
    """A method declared by a type."""

    id: str = Field(default_factory=_new_id, primary_key=True)
    repository_id: str = Field(foreign_key="repositoryrecord.id", index=True)
    type_id: str = Field(foreign_key="typenode.id", index=True)
    name: str = Field(index=True)
    fully_qualified_name: str = Field(description="Owning type FQN plus method name")
    file_path: str = Field(default="")
    signature: str = Field(default="")
    return_type: str = Field(default="void")
    parameters: list[dict] = Field(default_factory=list, sa_column=Column(JSON))
    annotations: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    calls: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    start_line: int = Field(default=0)
    end_line: int = Field(default=0)
    source_code: str = Field(default="", sa_column=Column(Text))
    description: str = Field(default="", sa_column=Column(Text))
    embedding: Optional[list[float]] = Field(default=None, sa_column=Column(JSON))


class FieldNode(SQLModel, table=True):
    """A field or enum constant declared by a type."""

    id: str = Field(default_factory=_new_id, primary_key=True)
    repository_id: str = Field(foreign_key="repositoryrecord.id", index=True)
    type_id: str = Field(foreign_key="typenode.id", index=True)
    name: str = Field(index=True)
    fully_qualified_name: str = Field(default="")
    field_type: str = Field(default="")
    file_path: str = Field(default="")
    annotations: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    start_line: int = Field(default=0)
    end_line: int = Field(default=0)


class AnnotationNode(SQLModel, table=True):
    """An annotation referenced in a repository, merged by name."""

    __table_args__ = (UniqueConstraint("repository_id", "name"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    repository_id: str = Field(foreign_key="repositoryrecord.id", index=True)
    name: str = Field(index=True, description="Annotation name including '@'")


class Edge(SQLModel, table=True):
    """A directed relationship between two nodes (DECLARES, ANNOTATED_BY, CALLS)."""

    id: Optional[int] = Field(default=None, primary_key=True)
    repository_id: str = Field(foreign_key="repositoryrecord.id", index=True)
    source_id: str = Field(index=True)
    target_id: str = Field(index=True)
    rel_type: str = Field(index=True)

"""
Graph store for the code knowledge graph.

Persists parsed TypeEntity trees as nodes and edges in SQLite and answers
the read side: entity lookup, relationship traversal, guarded structural
queries and cosine-similarity lookups over the named embedding indexes.

Replacing a repository's entity set is a single transaction: readers see
either the previous snapshot or the new one, never a mix and never an
empty intermediate state.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import numpy as np
import structlog
from sqlalchemy import func, or_, true
from sqlmodel import Session, select, text

from .database import create_db_and_tables, get_session
from .entities import (
    CodeEntity,
    EntityType,
    RelationshipDirection,
    RelationshipType,
    TypeEntity,
)
from .models import (
    AnnotationNode,
    Edge,
    FieldNode,
    MethodNode,
    RepositoryRecord,
    TypeNode,
)
from .query_guard import ensure_read_only, ensure_safe_write
from .repository_manager import (
    delete_repository_entities,
    remove_repository,
    upsert_repository_record,
)
from .schema import ensure_schema_version

log = structlog.get_logger()

TYPE_EMBEDDING_INDEX = "type_embedding_index"
METHOD_EMBEDDING_INDEX = "method_embedding_index"

_VECTOR_INDEXES = {
    TYPE_EMBEDDING_INDEX: TypeNode,
    METHOD_EMBEDDING_INDEX: MethodNode,
}


class GraphStoreError(Exception):
    """Base exception for graph store operations."""

    pass


class VectorIndexUnavailableError(GraphStoreError):
    """Raised when a vector index is unknown, disabled or cannot serve a query."""

    pass


class EntityNotFoundError(GraphStoreError):
    """Raised when an entity id does not resolve to any stored node."""

    pass


@dataclass
class StoreSummary:
    """Counts produced by one repository replacement."""

    entities_created: int
    relationships_created: int
    calls_resolved: int
    previous_rows_deleted: int


@dataclass
class RelatedEntity:
    """A neighbour reached over one edge."""

    entity: CodeEntity
    relationship_type: str
    direction: RelationshipDirection


def _in_repositories(column: Any, repository_ids: Sequence[str] | None) -> Any:
    if repository_ids:
        return column.in_(list(repository_ids))
    return true()


def _type_to_entity(node: TypeNode) -> CodeEntity:
    return CodeEntity(
        id=node.id,
        entity_type=EntityType(node.kind),
        repository_id=node.repository_id,
        name=node.name,
        fully_qualified_name=node.fully_qualified_name,
        file_path=node.file_path,
        start_line=node.start_line,
        end_line=node.end_line,
        source_code=node.source_code,
        description=node.description,
        annotations=list(node.annotations or []),
    )


def _method_to_entity(node: MethodNode) -> CodeEntity:
    return CodeEntity(
        id=node.id,
        entity_type=EntityType.METHOD,
        repository_id=node.repository_id,
        name=node.name,
        fully_qualified_name=node.fully_qualified_name,
        file_path=node.file_path,
        start_line=node.start_line,
        end_line=node.end_line,
        source_code=node.source_code,
        description=node.description,
        signature=node.signature,
        declared_type=node.return_type,
        annotations=list(node.annotations or []),
        owner_id=node.type_id,
    )


def _field_to_entity(node: FieldNode) -> CodeEntity:
    return CodeEntity(
        id=node.id,
        entity_type=EntityType.FIELD,
        repository_id=node.repository_id,
        name=node.name,
        fully_qualified_name=node.fully_qualified_name,
        file_path=node.file_path,
        start_line=node.start_line,
        end_line=node.end_line,
        declared_type=node.field_type,
        annotations=list(node.annotations or []),
        owner_id=node.type_id,
    )


def _annotation_to_entity(node: AnnotationNode) -> CodeEntity:
    return CodeEntity(
        id=node.id,
        entity_type=EntityType.ANNOTATION_REF,
        repository_id=node.repository_id,
        name=node.name,
        fully_qualified_name=node.name,
    )


_CONVERTERS = (
    (TypeNode, _type_to_entity),
    (MethodNode, _method_to_entity),
    (FieldNode, _field_to_entity),
    (AnnotationNode, _annotation_to_entity),
)


class GraphStore:
    """SQLite-backed store of repositories, entities and relationships."""

    def __init__(self, db_path: str | Path | None = None, vector_index_enabled: bool = True):
        """Initialize the store and make sure all tables exist.

        Args:
            db_path: Optional custom database path
            vector_index_enabled: When False every vector query raises
                VectorIndexUnavailableError
        """
        self.db_path = str(db_path) if db_path is not None else None
        self.vector_index_enabled = vector_index_enabled
        create_db_and_tables(self.db_path)
        ensure_schema_version(self.db_path)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def replace_repository_contents(
        self,
        repository_id: str,
        url: str,
        branch: str,
        language: str,
        commit_hash: str | None,
        types: Sequence[TypeEntity],
        indexed_at: datetime | None = None,
    ) -> StoreSummary:
        """Swap a repository's entity set for a freshly parsed one.

        Deletes every prior node and edge for the repository id, inserts the
        new types with their methods, fields and annotation references,
        resolves CALLS edges by method name and upserts the RepositoryRecord,
        all in one transaction.

        Args:
            repository_id: Id to store under (reused across reindexes)
            url: Repository URL as supplied by the caller
            branch: Indexed branch
            language: Source language label
            commit_hash: Commit the entity set was parsed from
            types: Parsed and enriched type entities
            indexed_at: Timestamp to record; defaults to now

        Returns:
            StoreSummary with created counts

        Raises:
            GraphStoreError: If the transaction fails; prior state is kept
        """
        try:
            with get_session(self.db_path) as session:
                deleted = delete_repository_entities(session, repository_id)
                upsert_repository_record(
                    session,
                    repository_id,
                    url,
                    branch,
                    language,
                    commit_hash,
                    indexed_at,
                )
                session.flush()

                summary = self._insert_types(session, repository_id, types)
                summary.previous_rows_deleted = deleted
                session.commit()

        except Exception as e:
            raise GraphStoreError(
                f"Failed to store entities for repository '{repository_id}': {str(e)}"
            ) from e

        log.info(
            "graph_store.repository_replaced",
            repository_id=repository_id,
            entities=summary.entities_created,
            relationships=summary.relationships_created,
            calls_resolved=summary.calls_resolved,
            previous_rows_deleted=summary.previous_rows_deleted,
        )
        return summary

    def _insert_types(
        self, session: Session, repository_id: str, types: Sequence[TypeEntity]
    ) -> StoreSummary:
        annotation_ids: dict[str, str] = {}
        edges: list[Edge] = []

        def annotate(source_id: str, names: Iterable[str]) -> None:
            for name in names:
                annotation_id = annotation_ids.get(name)
                if annotation_id is None:
                    node = AnnotationNode(repository_id=repository_id, name=name)
                    session.add(node)
                    annotation_id = node.id
                    annotation_ids[name] = annotation_id
                edges.append(
                    Edge(
                        repository_id=repository_id,
                        source_id=source_id,
                        target_id=annotation_id,
                        rel_type=RelationshipType.ANNOTATED_BY.value,
                    )
                )

        entity_count = 0
        methods_by_name: dict[str, list[str]] = {}

        for type_entity in types:
            session.add(
                TypeNode(
                    id=type_entity.id,
                    repository_id=repository_id,
                    name=type_entity.name,
                    package_name=type_entity.package_name,
                    fully_qualified_name=type_entity.fully_qualified_name,
                    file_path=type_entity.file_path,
                    kind=type_entity.kind.value,
                    annotations=list(type_entity.annotations),
                    superclass=type_entity.superclass,
                    interfaces=list(type_entity.interfaces),
                    start_line=type_entity.start_line,
                    end_line=type_entity.end_line,
                    source_code=type_entity.source_code,
                    description=type_entity.description,
                    embedding=type_entity.embedding,
                )
            )
            entity_count += 1
            annotate(type_entity.id, type_entity.annotations)

            for method in type_entity.methods:
                session.add(
                    MethodNode(
                        id=method.id,
                        repository_id=repository_id,
                        type_id=type_entity.id,
                        name=method.name,
                        fully_qualified_name=f"{type_entity.fully_qualified_name}.{method.name}",
                        file_path=type_entity.file_path,
                        signature=method.signature,
                        return_type=method.return_type,
                        parameters=[p.to_dict() for p in method.parameters],
                        annotations=list(method.annotations),
                        calls=list(method.calls),
                        start_line=method.start_line,
                        end_line=method.end_line,
                        source_code=method.source_code,
                        description=method.description,
                        embedding=method.embedding,
                    )
                )
                entity_count += 1
                methods_by_name.setdefault(method.name, []).append(method.id)
                edges.append(
                    Edge(
                        repository_id=repository_id,
                        source_id=type_entity.id,
                        target_id=method.id,
                        rel_type=RelationshipType.DECLARES.value,
                    )
                )
                annotate(method.id, method.annotations)

            for field in type_entity.fields:
                session.add(
                    FieldNode(
                        id=field.id,
                        repository_id=repository_id,
                        type_id=type_entity.id,
                        name=field.name,
                        fully_qualified_name=f"{type_entity.fully_qualified_name}.{field.name}",
                        field_type=field.type,
                        file_path=type_entity.file_path,
                        annotations=list(field.annotations),
                        start_line=field.start_line,
                        end_line=field.end_line,
                    )
                )
                entity_count += 1
                edges.append(
                    Edge(
                        repository_id=repository_id,
                        source_id=type_entity.id,
                        target_id=field.id,
                        rel_type=RelationshipType.DECLARES.value,
                    )
                )
                annotate(field.id, field.annotations)

        # Nodes first so foreign keys to typenode hold for methods and fields
        session.flush()

        calls_resolved = 0
        for type_entity in types:
            for method in type_entity.methods:
                for called in method.calls:
                    for target_id in methods_by_name.get(called, []):
                        edges.append(
                            Edge(
                                repository_id=repository_id,
                                source_id=method.id,
                                target_id=target_id,
                                rel_type=RelationshipType.CALLS.value,
                            )
                        )
                        calls_resolved += 1

        session.add_all(edges)
        session.flush()

        return StoreSummary(
            entities_created=entity_count,
            relationships_created=len(edges),
            calls_resolved=calls_resolved,
            previous_rows_deleted=0,
        )

    def delete_repository(self, repository_id: str) -> bool:
        """Remove a repository record and everything carrying its id."""
        return remove_repository(repository_id, self.db_path)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_repository(self, repository_id: str) -> RepositoryRecord | None:
        with get_session(self.db_path) as session:
            return session.get(RepositoryRecord, repository_id)

    def get_entity(self, entity_id: str) -> CodeEntity | None:
        """Look up any stored entity by id.

        Returns:
            CodeEntity or None when the id is unknown
        """
        with get_session(self.db_path) as session:
            return self._load_entities(session, [entity_id]).get(entity_id)

    def require_entity(self, entity_id: str) -> CodeEntity:
        """Like get_entity, but raise EntityNotFoundError for unknown ids."""
        entity = self.get_entity(entity_id)
        if entity is None:
            raise EntityNotFoundError(f"Entity '{entity_id}' not found")
        return entity

    def _load_entities(self, session: Session, ids: Iterable[str]) -> dict[str, CodeEntity]:
        pending = set(ids)
        found: dict[str, CodeEntity] = {}
        for model, convert in _CONVERTERS:
            if not pending:
                break
            rows = session.exec(select(model).where(model.id.in_(list(pending)))).all()
            for row in rows:
                found[row.id] = convert(row)
                pending.discard(row.id)
        return found

    def find_entities_by_type(
        self,
        repository_id: str,
        entity_type: EntityType | str,
        limit: int | None = None,
    ) -> list[CodeEntity]:
        """List entities of one kind within a repository.

        Args:
            repository_id: Repository to list
            entity_type: CLASS, INTERFACE, ENUM, ANNOTATION, METHOD, FIELD
                or ANNOTATION_REF
            limit: Optional maximum number of entities

        Returns:
            Entities ordered by fully-qualified name
        """
        entity_type = EntityType(entity_type)
        with get_session(self.db_path) as session:
            if entity_type.is_type:
                statement = (
                    select(TypeNode)
                    .where(TypeNode.repository_id == repository_id)
                    .where(TypeNode.kind == entity_type.value)
                    .order_by(TypeNode.fully_qualified_name)
                )
                convert = _type_to_entity
            elif entity_type is EntityType.METHOD:
                statement = (
                    select(MethodNode)
                    .where(MethodNode.repository_id == repository_id)
                    .order_by(MethodNode.fully_qualified_name, MethodNode.start_line)
                )
                convert = _method_to_entity
            elif entity_type is EntityType.FIELD:
                statement = (
                    select(FieldNode)
                    .where(FieldNode.repository_id == repository_id)
                    .order_by(FieldNode.fully_qualified_name)
                )
                convert = _field_to_entity
            else:
                statement = (
                    select(AnnotationNode)
                    .where(AnnotationNode.repository_id == repository_id)
                    .order_by(AnnotationNode.name)
                )
                convert = _annotation_to_entity

            if limit is not None:
                statement = statement.limit(limit)
            return [convert(row) for row in session.exec(statement).all()]

    def count_entities(self, repository_id: str) -> int:
        """Number of type, method and field entities stored for a repository."""
        total = 0
        with get_session(self.db_path) as session:
            for model in (TypeNode, MethodNode, FieldNode):
                statement = (
                    select(func.count())
                    .select_from(model)
                    .where(model.repository_id == repository_id)
                )
                total += int(session.exec(statement).one())
        return total

    def find_related_entities(
        self,
        entity_id: str,
        relationship_type: RelationshipType | str | None = None,
        direction: RelationshipDirection | str = RelationshipDirection.BOTH,
    ) -> list[RelatedEntity]:
        """Traverse one hop of edges from an entity.

        Args:
            entity_id: Entity to start from
            relationship_type: Optional edge type filter
            direction: INCOMING, OUTGOING or BOTH

        Returns:
            Neighbours with the edge type and direction they were reached by
        """
        direction = RelationshipDirection(direction)
        rel_value = RelationshipType(relationship_type).value if relationship_type else None

        with get_session(self.db_path) as session:
            hops: list[tuple[str, str, RelationshipDirection]] = []
            if direction in (RelationshipDirection.OUTGOING, RelationshipDirection.BOTH):
                statement = select(Edge).where(Edge.source_id == entity_id)
                if rel_value:
                    statement = statement.where(Edge.rel_type == rel_value)
                for edge in session.exec(statement.order_by(Edge.id)).all():
                    hops.append((edge.target_id, edge.rel_type, RelationshipDirection.OUTGOING))
            if direction in (RelationshipDirection.INCOMING, RelationshipDirection.BOTH):
                statement = select(Edge).where(Edge.target_id == entity_id)
                if rel_value:
                    statement = statement.where(Edge.rel_type == rel_value)
                for edge in session.exec(statement.order_by(Edge.id)).all():
                    hops.append((edge.source_id, edge.rel_type, RelationshipDirection.INCOMING))

            entities = self._load_entities(session, (hop[0] for hop in hops))

        return [
            RelatedEntity(entity=entities[neighbour_id], relationship_type=rel, direction=hop_dir)
            for neighbour_id, rel, hop_dir in hops
            if neighbour_id in entities
        ]

    def neighbour_ids(
        self, entity_ids: Iterable[str]
    ) -> dict[str, list[tuple[str, str, bool]]]:
        """Adjacency in both directions for a frontier of entity ids.

        Returns:
            Mapping of entity id to (neighbour id, relationship type, outgoing)
        """
        frontier = list(entity_ids)
        adjacency: dict[str, list[tuple[str, str, bool]]] = {entity_id: [] for entity_id in frontier}
        if not frontier:
            return adjacency
        with get_session(self.db_path) as session:
            statement = select(Edge).where(
                or_(Edge.source_id.in_(frontier), Edge.target_id.in_(frontier))
            )
            for edge in session.exec(statement.order_by(Edge.id)).all():
                if edge.source_id in adjacency:
                    adjacency[edge.source_id].append((edge.target_id, edge.rel_type, True))
                if edge.target_id in adjacency:
                    adjacency[edge.target_id].append((edge.source_id, edge.rel_type, False))
        return adjacency

    # ------------------------------------------------------------------
    # Search support
    # ------------------------------------------------------------------

    def find_exact_name_matches(
        self,
        name: str,
        entity_type: EntityType,
        repository_ids: Sequence[str] | None = None,
        limit: int = 10,
    ) -> list[CodeEntity]:
        """Case-insensitive exact name match against types or methods."""
        needle = name.strip().lower()
        with get_session(self.db_path) as session:
            if entity_type is EntityType.METHOD:
                statement = (
                    select(MethodNode)
                    .where(func.lower(MethodNode.name) == needle)
                    .where(_in_repositories(MethodNode.repository_id, repository_ids))
                    .order_by(MethodNode.fully_qualified_name)
                    .limit(limit)
                )
                return [_method_to_entity(row) for row in session.exec(statement).all()]

            statement = (
                select(TypeNode)
                .where(func.lower(TypeNode.name) == needle)
                .where(_in_repositories(TypeNode.repository_id, repository_ids))
                .order_by(TypeNode.fully_qualified_name)
                .limit(limit)
            )
            return [_type_to_entity(row) for row in session.exec(statement).all()]

    def find_by_name_containing(
        self,
        fragment: str,
        repository_ids: Sequence[str] | None = None,
        limit: int = 20,
    ) -> list[CodeEntity]:
        """Types and methods whose simple name contains a fragment."""
        needle = fragment.lower()
        with get_session(self.db_path) as session:
            types = session.exec(
                select(TypeNode)
                .where(func.lower(TypeNode.name).contains(needle, autoescape=True))
                .where(_in_repositories(TypeNode.repository_id, repository_ids))
                .order_by(TypeNode.fully_qualified_name)
                .limit(limit)
            ).all()
            methods = session.exec(
                select(MethodNode)
                .where(func.lower(MethodNode.name).contains(needle, autoescape=True))
                .where(_in_repositories(MethodNode.repository_id, repository_ids))
                .order_by(MethodNode.fully_qualified_name)
                .limit(limit)
            ).all()
        return [_type_to_entity(t) for t in types] + [_method_to_entity(m) for m in methods]

    def keyword_candidates(
        self,
        keywords: Sequence[str],
        entity_type: EntityType,
        repository_ids: Sequence[str] | None = None,
        limit: int = 20,
    ) -> list[CodeEntity]:
        """Entities with any keyword in a searchable text column.

        Types are matched over name, FQN, path, description and source;
        methods over name, FQN, signature, description and source; fields
        over name, FQN and declared type. Scoring is left to the caller.
        """
        if not keywords:
            return []

        if entity_type is EntityType.METHOD:
            model, convert = MethodNode, _method_to_entity
            columns = (
                MethodNode.name,
                MethodNode.fully_qualified_name,
                MethodNode.signature,
                MethodNode.description,
                MethodNode.source_code,
            )
        elif entity_type is EntityType.FIELD:
            model, convert = FieldNode, _field_to_entity
            columns = (FieldNode.name, FieldNode.fully_qualified_name, FieldNode.field_type)
        else:
            model, convert = TypeNode, _type_to_entity
            columns = (
                TypeNode.name,
                TypeNode.fully_qualified_name,
                TypeNode.file_path,
                TypeNode.description,
                TypeNode.source_code,
            )

        conditions = [
            func.lower(column).contains(keyword, autoescape=True)
            for keyword in keywords
            for column in columns
        ]
        with get_session(self.db_path) as session:
            statement = (
                select(model)
                .where(or_(*conditions))
                .where(_in_repositories(model.repository_id, repository_ids))
                .order_by(model.fully_qualified_name)
                .limit(limit)
            )
            return [convert(row) for row in session.exec(statement).all()]

    def find_types_by_path(
        self,
        fragment: str,
        repository_ids: Sequence[str] | None = None,
        limit: int = 3,
    ) -> list[CodeEntity]:
        """Types whose file path contains a literal fragment (case-insensitive)."""
        needle = fragment.strip().lower()
        if not needle:
            return []
        with get_session(self.db_path) as session:
            statement = (
                select(TypeNode)
                .where(func.lower(TypeNode.file_path).contains(needle, autoescape=True))
                .where(_in_repositories(TypeNode.repository_id, repository_ids))
                .order_by(TypeNode.file_path)
                .limit(limit)
            )
            return [_type_to_entity(row) for row in session.exec(statement).all()]

    def vector_search(
        self,
        index_name: str,
        vector: Sequence[float],
        top_k: int,
        repository_ids: Sequence[str] | None = None,
        min_score: float | None = None,
    ) -> list[tuple[CodeEntity, float]]:
        """Cosine-similarity lookup against a named embedding index.

        Args:
            index_name: type_embedding_index or method_embedding_index
            vector: Query embedding
            top_k: Maximum number of hits
            repository_ids: Optional repository filter
            min_score: Hits scoring below this are discarded

        Returns:
            (entity, similarity) pairs, best first

        Raises:
            VectorIndexUnavailableError: If the index is disabled, unknown, or
                the stored vectors do not match the query dimension
        """
        if not self.vector_index_enabled:
            raise VectorIndexUnavailableError("Vector index support is disabled")
        model = _VECTOR_INDEXES.get(index_name)
        if model is None:
            raise VectorIndexUnavailableError(f"Unknown vector index '{index_name}'")

        convert = _type_to_entity if model is TypeNode else _method_to_entity
        with get_session(self.db_path) as session:
            rows = session.exec(
                select(model)
                .where(model.embedding.is_not(None))
                .where(_in_repositories(model.repository_id, repository_ids))
            ).all()
            candidates = [(convert(row), row.embedding) for row in rows if row.embedding]

        if not candidates or top_k <= 0:
            return []

        query = np.asarray(vector, dtype=np.float32)
        try:
            matrix = np.asarray([embedding for _, embedding in candidates], dtype=np.float32)
        except ValueError as e:
            raise VectorIndexUnavailableError(
                f"Index '{index_name}' holds vectors of mixed dimensions"
            ) from e
        if matrix.ndim != 2 or matrix.shape[1] != query.shape[0]:
            raise VectorIndexUnavailableError(
                f"Index '{index_name}' dimension {matrix.shape[-1]} does not match "
                f"query dimension {query.shape[0]}"
            )

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        scores = np.divide(
            matrix @ query,
            norms,
            out=np.zeros(len(candidates), dtype=np.float32),
            where=norms > 0,
        )

        order = np.argsort(-scores, kind="stable")
        hits: list[tuple[CodeEntity, float]] = []
        for position in order:
            score = float(scores[position])
            if min_score is not None and score < min_score:
                break
            hits.append((candidates[position][0], score))
            if len(hits) >= top_k:
                break
        return hits

    # ------------------------------------------------------------------
    # Ad-hoc queries
    # ------------------------------------------------------------------

    def execute_query_raw(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Run a read-only parameterized query and return rows as dicts.

        Raises:
            UnsafeQueryError: If the query is not a single read statement
            GraphStoreError: If execution fails
        """
        ensure_read_only(query)
        try:
            with get_session(self.db_path) as session:
                result = session.exec(text(query).params(**(params or {})))
                return [dict(row) for row in result.mappings().all()]
        except Exception as e:
            raise GraphStoreError(f"Query failed: {str(e)}") from e

    def execute_query(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[CodeEntity]:
        """Run a read-only query that projects an `id` column; return typed entities.

        Ids that do not resolve to a stored entity are skipped. Row order is
        preserved and duplicate ids are collapsed.

        Raises:
            UnsafeQueryError: If the query is not a single read statement
            GraphStoreError: If execution fails or no `id` column is projected
        """
        rows = self.execute_query_raw(query, params)
        if rows and "id" not in rows[0]:
            raise GraphStoreError("Typed queries must project an 'id' column")

        ids = list(dict.fromkeys(str(row["id"]) for row in rows))
        with get_session(self.db_path) as session:
            entities = self._load_entities(session, ids)
        return [entities[entity_id] for entity_id in ids if entity_id in entities]

    def execute_write(self, query: str, params: dict[str, Any] | None = None) -> int:
        """Run a guarded INSERT or WHERE-qualified UPDATE.

        Returns:
            Number of affected rows

        Raises:
            UnsafeQueryError: If the query is outside the permitted write set
            GraphStoreError: If execution fails
        """
        ensure_safe_write(query)
        try:
            with get_session(self.db_path) as session:
                result = session.exec(text(query).params(**(params or {})))
                session.commit()
                return int(result.rowcount or 0)
        except Exception as e:
            raise GraphStoreError(f"Write failed: {str(e)}") from e

"""
Search functionality for KodeGraph.

This module answers code questions against the knowledge graph with four
retrieval modes:

- STRUCTURAL: identifier-like query words matched against entity names
- SEMANTIC: query embedding against the type and method vector indexes,
  degrading to weighted keyword search when the vector index is unavailable
- TEMPORAL: reserved for history questions; returns nothing
- HYBRID (default): exact name match first, otherwise structural and
  semantic results merged and deduplicated by entity id

It also serves dependency lookups (direct relationships of an entity) and
relationship explanations (shortest path between two entities).
"""

import re
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog
from rich.console import Console
from rich.table import Table

from .config import SearchConfig
from .embedding import Embedder, EmbeddingError
from .entities import (
    CodeEntity,
    EntityType,
    InvalidRequestError,
    RelationshipDirection,
)
from .graph_store import (
    METHOD_EMBEDDING_INDEX,
    TYPE_EMBEDDING_INDEX,
    GraphStore,
    VectorIndexUnavailableError,
)

log = structlog.get_logger()

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "is", "are", "was", "were", "be",
        "what", "how", "why", "where", "when", "which", "who",
        "does", "do", "did", "to", "of", "in", "on", "for", "with",
        "it", "this", "that", "me", "show", "find",
    }
)

STRUCTURAL_HINTS = ("call", "depend", "extend", "implement")
# matched on whole words
TEMPORAL_HINTS_RE = re.compile(
    r"\b(?:chang(?:e|es|ed|ing)|history|histories|recent|recently)\b", re.IGNORECASE
)

MAX_PATH_HOPS = 5

# Per-keyword field weights: name > qualified name/path/signature > free text
NAME_WEIGHT = 3.0
QUALIFIED_WEIGHT = 2.0
TEXT_WEIGHT = 1.0

_TOKEN_STRIP_RE = re.compile(r"[^a-z0-9.\-_/]")
_WORD_STRIP_RE = re.compile(r"[^\w.$]")


class SearchMode(str, Enum):
    STRUCTURAL = "STRUCTURAL"
    SEMANTIC = "SEMANTIC"
    TEMPORAL = "TEMPORAL"
    HYBRID = "HYBRID"


@dataclass
class SearchResult:
    """One ranked search hit."""

    entity_id: str
    entity_type: EntityType
    repository_id: str
    name: str
    fully_qualified_name: str | None
    file_path: str | None
    content: str
    score: float
    mode: SearchMode
    strategy: str = ""

    @classmethod
    def from_entity(
        cls, entity: CodeEntity, score: float, mode: SearchMode, strategy: str
    ) -> "SearchResult":
        content = entity.description or entity.signature or entity.source_code or entity.name
        return cls(
            entity_id=entity.id,
            entity_type=entity.entity_type,
            repository_id=entity.repository_id,
            name=entity.name,
            fully_qualified_name=entity.fully_qualified_name,
            file_path=entity.file_path,
            content=content,
            score=score,
            mode=mode,
            strategy=strategy,
        )

    def __str__(self) -> str:
        """String representation for display."""
        return f"{self.fully_qualified_name or self.name} ({self.entity_type.value}) {self.score:.2f}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "entity_id": self.entity_id,
            "entity_type": self.entity_type.value,
            "repository_id": self.repository_id,
            "name": self.name,
            "fully_qualified_name": self.fully_qualified_name,
            "file_path": self.file_path,
            "content": self.content,
            "score": round(self.score, 4),
            "mode": self.mode.value,
            "strategy": self.strategy,
        }


@dataclass
class SearchOptions:
    """Configuration options for search operations."""

    repository_ids: list[str] = field(default_factory=list)
    preferred_mode: SearchMode | None = None
    max_results: int | None = None


@dataclass
class DependencyNode:
    """A directly related entity in a dependency tree."""

    entity: CodeEntity
    relationship_type: str
    direction: RelationshipDirection
    depth: int = 1
    children: list["DependencyNode"] = field(default_factory=list)


@dataclass
class DependencyResult:
    root: CodeEntity
    dependencies: list[DependencyNode]
    requested_depth: int

    @property
    def total_count(self) -> int:
        return len(self.dependencies)


@dataclass
class PathStep:
    """One entity on a relationship path and the edge that led to it."""

    entity: CodeEntity
    relationship_type: str | None = None
    outgoing: bool = True


@dataclass
class RelationshipExplanation:
    from_entity: CodeEntity
    to_entity: CodeEntity
    path: list[PathStep]
    explanation: str

    @property
    def found(self) -> bool:
        return bool(self.path)


def tokenize_query(query: str) -> list[str]:
    """Keyword tokens: lowercased, punctuation stripped, stop-words dropped.

    Dots, slashes, dashes and underscores survive so package names and
    file paths stay whole ("PaymentService.java" -> "paymentservice.java").
    """
    tokens: list[str] = []
    for raw in query.split():
        token = _TOKEN_STRIP_RE.sub("", raw.lower()).strip(".")
        if len(token) < 2 or token in STOP_WORDS:
            continue
        tokens.append(token)
    return tokens


def is_path_like(query: str) -> bool:
    return "." in query or "/" in query


def detect_mode(query: str) -> SearchMode:
    """Pick a retrieval mode from the vocabulary of the query."""
    lowered = query.lower()
    if any(hint in lowered for hint in STRUCTURAL_HINTS):
        return SearchMode.STRUCTURAL
    if TEMPORAL_HINTS_RE.search(query):
        return SearchMode.TEMPORAL
    return SearchMode.HYBRID


def structural_terms(query: str) -> list[str]:
    """Identifier-like words: longer than two characters, starting uppercase."""
    terms: list[str] = []
    for raw in query.split():
        word = _WORD_STRIP_RE.sub("", raw).strip(".")
        if len(word) > 2 and word[0].isupper() and word not in terms:
            terms.append(word)
    return terms


def _dedupe(results: Sequence[SearchResult]) -> list[SearchResult]:
    seen: set[str] = set()
    unique: list[SearchResult] = []
    for result in results:
        if result.entity_id in seen:
            continue
        seen.add(result.entity_id)
        unique.append(result)
    return unique


class SearchEngine:
    """Read-only query engine over the graph store."""

    def __init__(
        self,
        store: GraphStore,
        embedder: Embedder,
        config: SearchConfig | None = None,
    ):
        self.store = store
        self.embedder = embedder
        self.config = config or SearchConfig()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """
        Answer a code question.

        Args:
            query: Natural-language question or identifier
            options: Repository filter, pinned mode and result ceiling

        Returns:
            Ranked results, capped by the mode ceiling and max_results

        Raises:
            InvalidRequestError: If the query is empty or max_results < 1
        """
        if not query or not query.strip():
            raise InvalidRequestError("Search query must not be empty")
        options = options or SearchOptions()
        max_results = options.max_results
        if max_results is None:
            max_results = self.config.default_max_results
        if max_results < 1:
            raise InvalidRequestError("max_results must be positive")

        mode = options.preferred_mode or detect_mode(query)
        repository_ids = options.repository_ids or None
        log.debug("search.started", query=query, mode=mode.value, repositories=repository_ids)

        if mode is SearchMode.STRUCTURAL:
            results = self.structural_search(query, repository_ids)
        elif mode is SearchMode.SEMANTIC:
            results = self.semantic_search(query, repository_ids)
        elif mode is SearchMode.TEMPORAL:
            results = self.temporal_search(query, repository_ids)
        else:
            results = self.hybrid_search(query, repository_ids)

        return results[:max_results]

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def structural_search(
        self, query: str, repository_ids: Sequence[str] | None = None
    ) -> list[SearchResult]:
        """Entities whose names contain an identifier-like word of the query."""
        limit = self.config.structural_limit
        terms = structural_terms(query) or [query.strip()]

        results: list[SearchResult] = []
        for term in terms:
            for entity in self.store.find_by_name_containing(term, repository_ids, limit):
                results.append(
                    SearchResult.from_entity(entity, 1.0, SearchMode.STRUCTURAL, "name")
                )
        return _dedupe(results)[:limit]

    def semantic_search(
        self, query: str, repository_ids: Sequence[str] | None = None
    ) -> list[SearchResult]:
        """Vector similarity over type and method descriptions.

        Hits below the similarity floor are discarded. If the query cannot be
        embedded or the vector index is unavailable, weighted keyword search
        answers instead.
        """
        limit = self.config.semantic_limit
        floor = self.config.similarity_floor
        try:
            vector = self.embedder.embed(query)
            hits = self.store.vector_search(
                TYPE_EMBEDDING_INDEX, vector, limit, repository_ids, min_score=floor
            )
            hits += self.store.vector_search(
                METHOD_EMBEDDING_INDEX, vector, limit, repository_ids, min_score=floor
            )
        except (VectorIndexUnavailableError, EmbeddingError) as e:
            log.warning("search.fallback_used", reason=str(e), query=query)
            return self.keyword_search(query, repository_ids)

        hits.sort(key=lambda hit: hit[1], reverse=True)
        return [
            SearchResult.from_entity(entity, score, SearchMode.SEMANTIC, "vector")
            for entity, score in hits
            if score >= floor
        ][:limit]

    def temporal_search(
        self, query: str, repository_ids: Sequence[str] | None = None
    ) -> list[SearchResult]:
        """History questions are not answered yet; always empty."""
        log.warning(
            "search.temporal_not_implemented",
            query=query,
            repositories=list(repository_ids or []),
        )
        return []

    def hybrid_search(
        self, query: str, repository_ids: Sequence[str] | None = None
    ) -> list[SearchResult]:
        """Exact name match first; structural plus semantic only when nothing matches exactly."""
        exact = self.exact_match_search(query, repository_ids)
        if exact:
            log.debug("search.exact_match", query=query, count=len(exact))
            return exact[: self.config.hybrid_limit]

        merged = self.structural_search(query, repository_ids) + self.semantic_search(
            query, repository_ids
        )
        return _dedupe(merged)[: self.config.hybrid_limit]

    def exact_match_search(
        self, query: str, repository_ids: Sequence[str] | None = None
    ) -> list[SearchResult]:
        """Types and methods named exactly like the query (case-insensitive), score 1.0."""
        name = query.strip()
        types = self.store.find_exact_name_matches(
            name, EntityType.CLASS, repository_ids, self.config.exact_type_limit
        )
        methods = self.store.find_exact_name_matches(
            name, EntityType.METHOD, repository_ids, self.config.exact_method_limit
        )
        return [
            SearchResult.from_entity(entity, 1.0, SearchMode.HYBRID, "exact")
            for entity in types + methods
        ]

    # ------------------------------------------------------------------
    # Keyword fallback
    # ------------------------------------------------------------------

    def keyword_search(
        self, query: str, repository_ids: Sequence[str] | None = None
    ) -> list[SearchResult]:
        """Field-weighted keyword containment over types, methods and fields.

        A keyword scores by the most important field it hits (name, then
        qualified name/path/signature, then description/source). The sum is
        divided by the best attainable sum for the keyword count. Types keep
        that score; methods are scaled down by the type boost and fields
        further by the field weight, so every score stays within [0, 1].
        """
        limit = self.config.semantic_limit
        tokens = tokenize_query(query)
        pool = limit * 3
        boost = self.config.type_boost

        scored: list[SearchResult] = []
        if tokens:
            per_kind = (
                (EntityType.CLASS, limit, 1.0),
                (EntityType.METHOD, max(1, min(10, limit // 2)), 1.0 / boost),
                (EntityType.FIELD, max(1, min(5, limit // 4)), self.config.field_weight / boost),
            )
            for entity_type, kind_limit, weight in per_kind:
                candidates = self.store.keyword_candidates(
                    tokens, entity_type, repository_ids, pool
                )
                kind_results = [
                    SearchResult.from_entity(
                        entity,
                        self._keyword_score(entity, tokens) * weight,
                        SearchMode.SEMANTIC,
                        "keyword",
                    )
                    for entity in candidates
                ]
                kind_results.sort(key=lambda r: r.score, reverse=True)
                scored.extend(r for r in kind_results[:kind_limit] if r.score > 0)

        if not scored and is_path_like(query):
            fragment = query.strip().strip("?!,;:\"'").lower()
            for entity in self.store.find_types_by_path(fragment, repository_ids):
                scored.append(SearchResult.from_entity(entity, 1.0, SearchMode.SEMANTIC, "path"))

        scored.sort(key=lambda r: r.score, reverse=True)
        return _dedupe(scored)[:limit]

    @staticmethod
    def _keyword_score(entity: CodeEntity, tokens: Sequence[str]) -> float:
        name = entity.name.lower()
        qualified = " ".join(
            v.lower() for v in (entity.fully_qualified_name, entity.file_path, entity.signature) if v
        )
        text = " ".join(
            v.lower() for v in (entity.description, entity.source_code, entity.declared_type) if v
        )

        total = 0.0
        for token in tokens:
            if token in name:
                total += NAME_WEIGHT
            elif token in qualified:
                total += QUALIFIED_WEIGHT
            elif token in text:
                total += TEXT_WEIGHT
        return total / (NAME_WEIGHT * len(tokens))

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def find_dependencies(
        self,
        entity_id: str,
        depth: int = 1,
        direction: RelationshipDirection | str = RelationshipDirection.BOTH,
    ) -> DependencyResult:
        """
        Direct relationships of an entity as a shallow dependency tree.

        Only one hop is traversed whatever the requested depth.

        Raises:
            InvalidRequestError: If depth < 1, the direction is unknown or the
                entity id is unknown
        """
        if depth < 1:
            raise InvalidRequestError("Depth must be at least 1")
        try:
            direction = RelationshipDirection(direction.upper())
        except ValueError as e:
            raise InvalidRequestError(f"Unknown direction: {direction}") from e
        root = self.store.get_entity(entity_id)
        if root is None:
            raise InvalidRequestError(f"Unknown entity id: {entity_id}")
        if depth > 1:
            log.debug("search.depth_limited", entity_id=entity_id, requested=depth)

        related = self.store.find_related_entities(entity_id, direction=direction)
        return DependencyResult(
            root=root,
            dependencies=[
                DependencyNode(
                    entity=r.entity,
                    relationship_type=r.relationship_type,
                    direction=r.direction,
                )
                for r in related
            ],
            requested_depth=depth,
        )

    def explain_relationship(self, from_id: str, to_id: str) -> RelationshipExplanation:
        """
        Shortest relationship path (up to five hops, any direction) between two entities.

        Raises:
            InvalidRequestError: If either entity id is unknown
        """
        source = self.store.get_entity(from_id)
        target = self.store.get_entity(to_id)
        if source is None:
            raise InvalidRequestError(f"Unknown entity id: {from_id}")
        if target is None:
            raise InvalidRequestError(f"Unknown entity id: {to_id}")

        if from_id == to_id:
            return RelationshipExplanation(
                source, target, [PathStep(source)], f"{source.name} is the same entity"
            )

        parents: dict[str, tuple[str, str, bool]] = {}
        visited = {from_id}
        frontier = deque([from_id])
        found = False

        for _hop in range(MAX_PATH_HOPS):
            if not frontier or found:
                break
            adjacency = self.store.neighbour_ids(list(frontier))
            next_frontier: deque[str] = deque()
            for current in frontier:
                for neighbour, rel_type, outgoing in adjacency.get(current, []):
                    if neighbour in visited:
                        continue
                    visited.add(neighbour)
                    parents[neighbour] = (current, rel_type, outgoing)
                    if neighbour == to_id:
                        found = True
                        break
                    next_frontier.append(neighbour)
                if found:
                    break
            frontier = next_frontier

        if not found:
            return RelationshipExplanation(
                source,
                target,
                [],
                f"No relationship found between {source.name} and {target.name} "
                f"within {MAX_PATH_HOPS} hops",
            )

        chain: list[tuple[str, str | None, bool]] = []
        node = to_id
        while node != from_id:
            parent, rel_type, outgoing = parents[node]
            chain.append((node, rel_type, outgoing))
            node = parent
        chain.append((from_id, None, True))
        chain.reverse()

        steps: list[PathStep] = []
        for entity_id, rel_type, outgoing in chain:
            entity = self.store.get_entity(entity_id)
            if entity is None:
                raise InvalidRequestError(f"Entity {entity_id} disappeared during traversal")
            steps.append(PathStep(entity, rel_type, outgoing))

        return RelationshipExplanation(source, target, steps, self._describe_path(steps))

    @staticmethod
    def _describe_path(steps: Sequence[PathStep]) -> str:
        parts = [steps[0].entity.name]
        for step in steps[1:]:
            arrow = f" -[{step.relationship_type}]-> " if step.outgoing else f" <-[{step.relationship_type}]- "
            parts.append(arrow + step.entity.name)
        hops = len(steps) - 1
        return f"{''.join(parts)} ({hops} hop{'s' if hops != 1 else ''})"


class SearchResultFormatter:
    """Rich formatting for search results."""

    def __init__(self, console: Console | None = None):
        """Initialize formatter with optional console."""
        self.console = console or Console()

    def format_results_table(self, results: list[SearchResult], query: str = "") -> Table:
        """Format search results as a rich table."""
        table = Table(title=f"Search Results: '{query}'" if query else "Search Results")
        table.add_column("Score", style="green", justify="right")
        table.add_column("Type", style="magenta")
        table.add_column("Name", style="cyan")
        table.add_column("File", style="white")
        table.add_column("Id", style="dim", no_wrap=True)

        for result in results:
            table.add_row(
                f"{result.score:.2f}",
                result.entity_type.value,
                result.fully_qualified_name or result.name,
                result.file_path or "",
                result.entity_id,
            )

        return table

    def format_dependencies_table(self, result: DependencyResult) -> Table:
        table = Table(
            title=f"Dependencies of {result.root.fully_qualified_name or result.root.name}"
        )
        table.add_column("Direction", style="yellow")
        table.add_column("Relationship", style="magenta")
        table.add_column("Type", style="cyan")
        table.add_column("Name", style="white")
        table.add_column("Id", style="dim", no_wrap=True)

        for node in result.dependencies:
            table.add_row(
                node.direction.value,
                node.relationship_type,
                node.entity.entity_type.value,
                node.entity.fully_qualified_name or node.entity.name,
                node.entity.id,
            )
        return table

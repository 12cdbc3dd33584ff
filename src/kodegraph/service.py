"""
Service facade for KodeGraph.

KnowledgeService wires the graph store, git client, parser, enrichment
pipeline, indexing manager and search engine together and exposes the
operations callers use: ensure a repository is indexed, check its
freshness, search it, and explore relationships between entities.
"""

from typing import Any

import structlog

from .config import KodeGraphConfig, load_config
from .embedding import Embedder, EnrichmentPipeline, FastEmbedEmbedder
from .entities import InvalidRequestError, RelationshipDirection
from .git_manager import GitClient
from .graph_store import GraphStore
from .indexing import (
    IndexingManager,
    IndexingProgress,
    IndexingResult,
    IndexingService,
    IndexStatus,
)
from .models import RepositoryRecord
from .parser import JavaSourceParser
from .repository_manager import get_repository_info, list_repositories
from .schema import get_database_statistics, validate_schema
from .search import (
    DependencyResult,
    RelationshipExplanation,
    SearchEngine,
    SearchMode,
    SearchOptions,
    SearchResult,
)

log = structlog.get_logger()


class KnowledgeService:
    """Entry point for indexing and querying code knowledge graphs."""

    def __init__(
        self,
        config: KodeGraphConfig,
        store: GraphStore,
        manager: IndexingManager,
        engine: SearchEngine,
    ):
        self.config = config
        self.store = store
        self.manager = manager
        self.engine = engine

    # Indexing

    def ensure_indexed(self, url: str, branch: str | None = None) -> str:
        """Index the branch if it is missing, stale or failed; return the repository id."""
        return self.manager.ensure_indexed(url, branch)

    def check_index_status(self, url: str, branch: str | None = None) -> IndexStatus:
        return self.manager.check_index_status(url, branch)

    def get_repository_by_url(
        self, url: str, branch: str | None = None
    ) -> RepositoryRecord | None:
        return self.manager.get_repository_by_url(url, branch)

    def get_indexing_progress(self, repository_id: str) -> IndexingProgress | None:
        return self.manager.get_indexing_progress(repository_id)

    def reindex_repository(self, repository_id: str) -> IndexingResult:
        return self.manager.reindex_repository(repository_id)

    # Search

    def search(
        self,
        query: str,
        repository_ids: list[str] | None = None,
        preferred_mode: SearchMode | str | None = None,
        max_results: int | None = None,
    ) -> list[SearchResult]:
        if isinstance(preferred_mode, str):
            try:
                preferred_mode = SearchMode(preferred_mode.upper())
            except ValueError as e:
                raise InvalidRequestError(f"Unknown search mode: {preferred_mode}") from e
        options = SearchOptions(
            repository_ids=list(repository_ids or []),
            preferred_mode=preferred_mode,
            max_results=max_results,
        )
        return self.engine.search(query, options)

    def find_dependencies(
        self,
        entity_id: str,
        depth: int = 1,
        direction: RelationshipDirection | str = RelationshipDirection.BOTH,
    ) -> DependencyResult:
        return self.engine.find_dependencies(entity_id, depth, direction)

    def explain_relationship(self, from_id: str, to_id: str) -> RelationshipExplanation:
        return self.engine.explain_relationship(from_id, to_id)

    # Operator surface

    def list_repositories(self) -> list[RepositoryRecord]:
        return list_repositories(self.store.db_path)

    def repository_info(self, repository_id: str) -> dict[str, Any]:
        return get_repository_info(repository_id, self.store.db_path)

    def remove_repository(self, repository_id: str) -> bool:
        removed = self.store.delete_repository(repository_id)
        log.info("service.repository_removed", repository_id=repository_id, removed=removed)
        return removed

    def validate(self) -> dict[str, Any]:
        return validate_schema(self.store.db_path)

    def statistics(self) -> dict[str, int | float]:
        return get_database_statistics(self.store.db_path)

    def close(self) -> None:
        self.manager.shutdown(wait=False)


def build_service(
    config: KodeGraphConfig | None = None,
    embedder: Embedder | None = None,
) -> KnowledgeService:
    """
    Assemble a KnowledgeService from configuration.

    Args:
        config: Loaded configuration; load_config() when omitted
        embedder: Embedding function; a fastembed model when omitted

    Returns:
        Ready-to-use KnowledgeService
    """
    config = config or load_config()
    db_path = str(config.storage.resolved_db_path)

    store = GraphStore(db_path, vector_index_enabled=config.embedding.vector_index_enabled)
    embedder = embedder or FastEmbedEmbedder(
        model_name=config.embedding.model_name,
        batch_size=config.embedding.batch_size,
    )
    service = IndexingService(
        store=store,
        git_client=GitClient(config.storage.resolved_workspace_dir),
        parser=JavaSourceParser(strict=config.indexing.strict_parse),
        pipeline=EnrichmentPipeline(embedder, batch_size=config.embedding.batch_size),
        config=config.indexing,
    )
    manager = IndexingManager(service, config.indexing)
    engine = SearchEngine(store, embedder, config.search)

    log.debug("service.built", db_path=db_path)
    return KnowledgeService(config, store, manager, engine)

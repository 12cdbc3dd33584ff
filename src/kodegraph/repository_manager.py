"""
Repository record CRUD operations and management.

This module provides high-level functions for managing RepositoryRecord rows,
the durable index manifest: looking records up by id or by (normalized URL,
branch), listing them, and removing a repository together with every entity
and relationship that carries its id.
"""

from datetime import datetime

from sqlalchemy import delete, func
from sqlmodel import Session, select

from .database import get_session
from .models import (
    AnnotationNode,
    Edge,
    FieldNode,
    MethodNode,
    RepositoryRecord,
    TypeNode,
)


class RepositoryError(Exception):
    """Base exception for repository operations."""

    pass


class RepositoryNotFoundError(RepositoryError):
    """Raised when a repository is not found."""

    pass


def normalize_url(url: str) -> str:
    """Canonical form of a repository URL used for deduplication.

    Trailing slashes, a trailing ".git", backslash separators and case are
    ignored, so "https://GitHub.com/acme/shop.git/" and
    "https://github.com/acme/shop" normalize to the same key.

    Args:
        url: Repository URL or local path

    Returns:
        Normalized URL string
    """
    normalized = url.strip().replace("\\", "/")
    while True:
        stripped = normalized.rstrip("/")
        if stripped.lower().endswith(".git"):
            stripped = stripped[: -len(".git")]
        if stripped == normalized:
            break
        normalized = stripped
    return normalized.lower()


def find_repository_by_url(
    url: str, branch: str, db_path: str | None = None
) -> RepositoryRecord | None:
    """Find the record for a (URL, branch) pair, comparing normalized URLs.

    Args:
        url: Repository URL in any equivalent spelling
        branch: Branch name
        db_path: Optional custom database path

    Returns:
        RepositoryRecord or None when the pair has never been indexed

    Raises:
        RepositoryError: If database operation fails
    """
    try:
        with get_session(db_path) as session:
            statement = select(RepositoryRecord).where(
                RepositoryRecord.normalized_url == normalize_url(url),
                RepositoryRecord.branch == branch,
            )
            return session.exec(statement).first()

    except Exception as e:
        raise RepositoryError(
            f"Failed to look up repository '{url}' ({branch}): {str(e)}"
        ) from e


def get_repository(repository_id: str, db_path: str | None = None) -> RepositoryRecord:
    """Get repository record by id.

    Args:
        repository_id: Repository id to look up
        db_path: Optional custom database path

    Returns:
        RepositoryRecord instance

    Raises:
        RepositoryNotFoundError: If repository is not found
        RepositoryError: If database operation fails
    """
    try:
        with get_session(db_path) as session:
            repository = session.get(RepositoryRecord, repository_id)

            if repository is None:
                raise RepositoryNotFoundError(
                    f"Repository with id '{repository_id}' not found"
                )

            return repository

    except RepositoryNotFoundError:
        raise
    except Exception as e:
        raise RepositoryError(
            f"Failed to get repository '{repository_id}': {str(e)}"
        ) from e


def list_repositories(db_path: str | None = None) -> list[RepositoryRecord]:
    """List all repository records.

    Args:
        db_path: Optional custom database path

    Returns:
        List of RepositoryRecord instances, ordered by URL then branch

    Raises:
        RepositoryError: If database operation fails
    """
    try:
        with get_session(db_path) as session:
            statement = select(RepositoryRecord).order_by(
                RepositoryRecord.normalized_url, RepositoryRecord.branch
            )
            return list(session.exec(statement).all())

    except Exception as e:
        raise RepositoryError(f"Failed to list repositories: {str(e)}") from e


def upsert_repository_record(
    session: Session,
    repository_id: str,
    url: str,
    branch: str,
    language: str,
    commit_hash: str | None,
    indexed_at: datetime | None = None,
) -> RepositoryRecord:
    """Create or update a record inside the caller's transaction.

    The caller owns the session and the commit, so the record update can be
    part of the same transaction as the entity replacement.
    """
    record = session.get(RepositoryRecord, repository_id)
    if record is None:
        record = RepositoryRecord(
            id=repository_id,
            url=url,
            normalized_url=normalize_url(url),
            branch=branch,
            language=language,
        )
    record.last_indexed_commit = commit_hash
    record.last_indexed_at = indexed_at or datetime.now()
    session.add(record)
    return record


def delete_repository_entities(session: Session, repository_id: str) -> int:
    """Delete every entity and edge carrying a repository id.

    Runs inside the caller's transaction. Children go first so foreign
    keys hold at every statement.

    Returns:
        Number of rows deleted
    """
    deleted = 0
    for model in (Edge, AnnotationNode, FieldNode, MethodNode, TypeNode):
        result = session.exec(delete(model).where(model.repository_id == repository_id))
        deleted += result.rowcount or 0
    return deleted


def remove_repository(repository_id: str, db_path: str | None = None) -> bool:
    """Remove repository record and all associated entities and relationships.

    Args:
        repository_id: Repository id to remove
        db_path: Optional custom database path

    Returns:
        True if repository was removed, False if it didn't exist

    Raises:
        RepositoryError: If database operation fails
    """
    try:
        with get_session(db_path) as session:
            repository = session.get(RepositoryRecord, repository_id)

            if repository is None:
                return False

            delete_repository_entities(session, repository_id)
            session.delete(repository)
            session.commit()

            return True

    except Exception as e:
        raise RepositoryError(
            f"Failed to remove repository '{repository_id}': {str(e)}"
        ) from e


def get_repository_info(repository_id: str, db_path: str | None = None) -> dict:
    """Get detailed repository information including entity counts.

    Args:
        repository_id: Repository id
        db_path: Optional custom database path

    Returns:
        Dictionary with repository information

    Raises:
        RepositoryNotFoundError: If repository is not found
        RepositoryError: If database operation fails
    """
    try:
        with get_session(db_path) as session:
            repository = session.get(RepositoryRecord, repository_id)

            if repository is None:
                raise RepositoryNotFoundError(
                    f"Repository with id '{repository_id}' not found"
                )

            counts = {}
            for label, model in (
                ("type_count", TypeNode),
                ("method_count", MethodNode),
                ("field_count", FieldNode),
                ("annotation_count", AnnotationNode),
                ("relationship_count", Edge),
            ):
                statement = (
                    select(func.count())
                    .select_from(model)
                    .where(model.repository_id == repository_id)
                )
                counts[label] = int(session.exec(statement).one())

            return {
                "id": repository.id,
                "url": repository.url,
                "normalized_url": repository.normalized_url,
                "branch": repository.branch,
                "language": repository.language,
                "last_indexed_commit": repository.last_indexed_commit,
                "last_indexed_at": repository.last_indexed_at,
                **counts,
            }

    except RepositoryNotFoundError:
        raise
    except Exception as e:
        raise RepositoryError(
            f"Failed to get repository info for '{repository_id}': {str(e)}"
        ) from e

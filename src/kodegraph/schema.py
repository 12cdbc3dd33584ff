"""
Database schema validation and statistics.

This module provides utilities for validating the integrity of the graph
database (required tables, orphaned nodes and edges), gathering statistics
and tracking the schema version.
"""

from sqlmodel import text

from .database import DatabaseConfig, get_session

# Current schema version - increment when making schema changes
SCHEMA_VERSION = 1

REQUIRED_TABLES = [
    "repositoryrecord",
    "typenode",
    "methodnode",
    "fieldnode",
    "annotationnode",
    "edge",
]

# (label, query counting rows whose repository no longer exists)
ORPHAN_CHECKS = (
    ("orphaned_types", "SELECT COUNT(*) FROM typenode WHERE repository_id NOT IN (SELECT id FROM repositoryrecord)"),
    ("orphaned_methods", "SELECT COUNT(*) FROM methodnode WHERE type_id NOT IN (SELECT id FROM typenode)"),
    ("orphaned_fields", "SELECT COUNT(*) FROM fieldnode WHERE type_id NOT IN (SELECT id FROM typenode)"),
    ("orphaned_annotations", "SELECT COUNT(*) FROM annotationnode WHERE repository_id NOT IN (SELECT id FROM repositoryrecord)"),
    ("orphaned_edges", "SELECT COUNT(*) FROM edge WHERE repository_id NOT IN (SELECT id FROM repositoryrecord)"),
)


class SchemaError(Exception):
    """Base exception for schema operations."""

    pass


class SchemaValidationError(SchemaError):
    """Raised when schema validation fails."""

    pass


def get_schema_version(db_path: str | None = None) -> int:
    """Get current database schema version.

    Args:
        db_path: Optional custom database path

    Returns:
        Schema version number (0 if not set)

    Raises:
        SchemaError: If unable to determine schema version
    """
    try:
        with get_session(db_path) as session:
            result = session.exec(
                text(
                    "SELECT name FROM sqlite_master WHERE type='table' "
                    "AND name='schema_version'"
                )
            ).first()

            if not result:
                return 0

            version_result = session.exec(
                text("SELECT version FROM schema_version ORDER BY id DESC LIMIT 1")
            ).first()
            return int(version_result[0]) if version_result else 0

    except Exception as e:
        raise SchemaError(f"Failed to get schema version: {str(e)}") from e


def set_schema_version(version: int, db_path: str | None = None) -> None:
    """Set database schema version.

    Args:
        version: Schema version to set
        db_path: Optional custom database path

    Raises:
        SchemaError: If unable to set schema version
    """
    try:
        with get_session(db_path) as session:
            session.exec(
                text(
                    """
                CREATE TABLE IF NOT EXISTS schema_version (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    version INTEGER NOT NULL,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """
                )
            )
            session.exec(
                text("INSERT INTO schema_version (version) VALUES (:version)").params(
                    version=version
                )
            )
            session.commit()

    except Exception as e:
        raise SchemaError(f"Failed to set schema version: {str(e)}") from e


def ensure_schema_version(db_path: str | None = None) -> int:
    """Stamp a fresh database with the current schema version.

    Returns:
        The schema version recorded after the call
    """
    current = get_schema_version(db_path)
    if current == 0:
        set_schema_version(SCHEMA_VERSION, db_path)
        return SCHEMA_VERSION
    return current


def validate_schema(db_path: str | None = None) -> dict[str, bool | str | int | list[str]]:
    """Validate database schema integrity.

    Args:
        db_path: Optional custom database path

    Returns:
        Dictionary with validation results, including one orphan count per
        node kind and for edges

    Raises:
        SchemaValidationError: If the checks cannot be run
    """
    try:
        config = DatabaseConfig(db_path)
        validation_results: dict[str, bool | str | int | list[str]] = {
            "database_exists": config.db_path.exists(),
            "schema_version": 0,
            "tables_exist": False,
            "foreign_keys_enabled": False,
            "indexes_exist": False,
            "data_integrity": False,
        }

        if not config.db_path.exists():
            return validation_results

        validation_results["schema_version"] = get_schema_version(db_path)

        with get_session(db_path) as session:
            existing_tables = []
            for table in REQUIRED_TABLES:
                result = session.exec(
                    text(
                        "SELECT name FROM sqlite_master WHERE type='table' "
                        "AND name=:table"
                    ).params(table=table)
                ).first()
                if result:
                    existing_tables.append(table)

            validation_results["tables_exist"] = len(existing_tables) == len(REQUIRED_TABLES)
            validation_results["existing_tables"] = existing_tables

            fk_result = session.exec(text("PRAGMA foreign_keys")).first()
            validation_results["foreign_keys_enabled"] = bool(fk_result[0]) if fk_result else False

            index_result = session.exec(
                text(
                    "SELECT name FROM sqlite_master WHERE type='index' "
                    "AND name NOT LIKE 'sqlite_%'"
                )
            ).all()
            validation_results["indexes_exist"] = len(list(index_result)) > 0

            if validation_results["tables_exist"]:
                total_orphans = 0
                for label, query in ORPHAN_CHECKS:
                    row = session.exec(text(query)).first()
                    count = int(row[0]) if row else 0
                    validation_results[label] = count
                    total_orphans += count
                validation_results["data_integrity"] = total_orphans == 0

        return validation_results

    except Exception as e:
        raise SchemaValidationError(f"Schema validation failed: {str(e)}") from e


def get_database_statistics(db_path: str | None = None) -> dict[str, int | float]:
    """Get database statistics and health information.

    Args:
        db_path: Optional custom database path

    Returns:
        Dictionary with database size and per-table row counts

    Raises:
        SchemaError: If unable to gather statistics
    """
    try:
        config = DatabaseConfig(db_path)
        stats: dict[str, int | float] = {
            "database_size_mb": 0.0,
            "repository_count": 0,
            "indexed_repository_count": 0,
            "type_count": 0,
            "method_count": 0,
            "field_count": 0,
            "annotation_count": 0,
            "relationship_count": 0,
            "embedding_count": 0,
        }

        if not config.db_path.exists():
            return stats

        size_bytes = config.db_path.stat().st_size
        stats["database_size_mb"] = round(size_bytes / (1024 * 1024), 2)

        counts = (
            ("repository_count", "SELECT COUNT(*) FROM repositoryrecord"),
            (
                "indexed_repository_count",
                "SELECT COUNT(*) FROM repositoryrecord WHERE last_indexed_commit IS NOT NULL",
            ),
            ("type_count", "SELECT COUNT(*) FROM typenode"),
            ("method_count", "SELECT COUNT(*) FROM methodnode"),
            ("field_count", "SELECT COUNT(*) FROM fieldnode"),
            ("annotation_count", "SELECT COUNT(*) FROM annotationnode"),
            ("relationship_count", "SELECT COUNT(*) FROM edge"),
            (
                "embedding_count",
                "SELECT (SELECT COUNT(*) FROM typenode WHERE embedding IS NOT NULL) "
                "+ (SELECT COUNT(*) FROM methodnode WHERE embedding IS NOT NULL)",
            ),
        )
        with get_session(db_path) as session:
            for key, query in counts:
                row = session.exec(text(query)).first()
                stats[key] = int(row[0]) if row else 0

        return stats

    except Exception as e:
        raise SchemaError(f"Failed to get database statistics: {str(e)}") from e


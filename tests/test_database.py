"""
Tests for database setup, repository records and schema utilities
using real SQLite databases (no mocks).
"""

from pathlib import Path

import pytest
from sqlmodel import Session, select, text

from kodegraph.database import (
    DatabaseConfig,
    create_db_and_tables,
    get_session,
)
from kodegraph.models import RepositoryRecord, TypeNode
from kodegraph.repository_manager import (
    RepositoryNotFoundError,
    find_repository_by_url,
    get_repository,
    get_repository_info,
    list_repositories,
    normalize_url,
    remove_repository,
)
from kodegraph.schema import (
    SCHEMA_VERSION,
    get_database_statistics,
    get_schema_version,
    set_schema_version,
    validate_schema,
)

from .conftest import SHOP_ENTITY_COUNT


class TestDatabaseSetup:
    """Test database initialization and configuration."""

    def test_create_db_and_tables_with_custom_path(self, db_path):
        create_db_and_tables(db_path)

        assert Path(db_path).exists()
        assert validate_schema(db_path)["tables_exist"] is True

    def test_database_config_defaults_next_to_file(self, temp_dir):
        config = DatabaseConfig(temp_dir / "nested" / "graph.sqlite")

        assert config.home_dir == temp_dir / "nested"
        assert config.database_url.startswith("sqlite:///")

    def test_pragmas_applied_to_connections(self, db_path):
        create_db_and_tables(db_path)

        with get_session(db_path) as session:
            assert session.exec(text("PRAGMA foreign_keys")).first()[0] == 1
            assert session.exec(text("PRAGMA journal_mode")).first()[0] == "wal"

    def test_session_rolls_back_on_error(self, db_path):
        create_db_and_tables(db_path)

        with pytest.raises(RuntimeError):
            with get_session(db_path) as session:
                assert isinstance(session, Session)
                session.add(RepositoryRecord(url="u", normalized_url="u", branch="main"))
                session.flush()
                raise RuntimeError("boom")

        with get_session(db_path) as session:
            assert session.exec(select(RepositoryRecord)).all() == []


class TestRepositoryRecords:
    """Record lookups keyed by normalized URL and branch."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/Acme/Shop",
            "https://github.com/acme/shop.git",
            "https://github.com/acme/shop/",
            "  https://github.com/acme/shop.git/  ",
        ],
    )
    def test_normalize_url(self, url):
        assert normalize_url(url) == "https://github.com/acme/shop"

    def test_find_by_any_equivalent_url(self, populated_store, db_path):
        record = find_repository_by_url("https://GitHub.com/acme/shop.git", "main", db_path)

        assert record is not None
        assert record.id == "repo-1"
        assert find_repository_by_url("https://github.com/acme/shop", "develop", db_path) is None

    def test_get_and_list(self, populated_store, db_path):
        assert get_repository("repo-1", db_path).branch == "main"
        assert [r.id for r in list_repositories(db_path)] == ["repo-1"]

        with pytest.raises(RepositoryNotFoundError):
            get_repository("missing", db_path)

    def test_repository_info_counts(self, populated_store, db_path):
        info = get_repository_info("repo-1", db_path)

        assert info["type_count"] == 3
        assert info["method_count"] == 5
        assert info["field_count"] == 6
        assert info["annotation_count"] == 3
        assert info["relationship_count"] == 16
        assert info["type_count"] + info["method_count"] + info["field_count"] == SHOP_ENTITY_COUNT

    def test_remove_repository(self, populated_store, db_path):
        assert remove_repository("repo-1", db_path) is True
        assert remove_repository("repo-1", db_path) is False

        with get_session(db_path) as session:
            assert session.exec(select(TypeNode)).all() == []


class TestSchema:
    """Schema version, validation and statistics."""

    def test_store_stamps_schema_version(self, store, db_path):
        assert get_schema_version(db_path) == SCHEMA_VERSION

    def test_set_schema_version(self, db_path):
        create_db_and_tables(db_path)
        assert get_schema_version(db_path) == 0

        set_schema_version(7, db_path)
        assert get_schema_version(db_path) == 7

    def test_validate_healthy_schema(self, populated_store, db_path):
        results = validate_schema(db_path)

        assert results["database_exists"] is True
        assert results["tables_exist"] is True
        assert results["foreign_keys_enabled"] is True
        assert results["data_integrity"] is True
        assert results["orphaned_edges"] == 0

    def test_validate_missing_database(self, temp_dir):
        results = validate_schema(str(temp_dir / "absent.sqlite"))

        assert results["database_exists"] is False
        assert results["tables_exist"] is False

    def test_statistics(self, populated_store, db_path):
        stats = get_database_statistics(db_path)

        assert stats["repository_count"] == 1
        assert stats["indexed_repository_count"] == 1
        assert stats["type_count"] == 3
        assert stats["method_count"] == 5
        assert stats["relationship_count"] == 16
        assert stats["embedding_count"] == 8

    def test_validate_reports_orphaned_edges(self, populated_store, db_path):
        with get_session(db_path) as session:
            session.exec(
                text(
                    "INSERT INTO edge (repository_id, source_id, target_id, rel_type) "
                    "VALUES ('ghost', 'a', 'b', 'CALLS')"
                )
            )
            session.commit()

        results = validate_schema(db_path)

        assert results["orphaned_edges"] == 1
        assert results["data_integrity"] is False

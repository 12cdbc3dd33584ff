"""
CLI integration tests using Typer CliRunner against a local repository.

The service is built with a deterministic embedder and injected in place of
the configured one.
"""

import json

import pytest
from typer.testing import CliRunner

from kodegraph import __version__
from kodegraph import main as cli
from kodegraph.entities import EntityType
from kodegraph.main import app

from .conftest import SHOP_ENTITY_COUNT

runner = CliRunner(env={"COLUMNS": "200"})


@pytest.fixture
def cli_service(service, monkeypatch):
    monkeypatch.setattr(cli, "get_service", lambda: service)
    return service


@pytest.fixture
def indexed(cli_service, shop_repo):
    """(service, repository url, repository id) after indexing the shop repo."""
    url = shop_repo.working_tree_dir
    repository_id = cli_service.ensure_indexed(url)
    return cli_service, url, repository_id


def method_id(service, name):
    return service.store.find_exact_name_matches(name, EntityType.METHOD)[0].id


class TestGeneral:
    def test_help(self):
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "KodeGraph" in result.output
        for command in ("index", "status", "search", "deps", "explain", "list", "doctor"):
            assert command in result.output

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_list_empty(self, cli_service):
        result = runner.invoke(app, ["list"])

        assert result.exit_code == 0
        assert "No repositories indexed yet" in result.output


class TestIndexing:
    def test_index_local_repository(self, cli_service, shop_repo):
        result = runner.invoke(app, ["index", shop_repo.working_tree_dir])

        assert result.exit_code == 0, result.output
        assert "Indexed:" in result.output
        repositories = cli_service.list_repositories()
        assert len(repositories) == 1
        assert repositories[0].id in result.output

    def test_force_reindex_reports_counts(self, indexed):
        _service, url, _repository_id = indexed

        result = runner.invoke(app, ["index", url, "--force"])

        assert result.exit_code == 0, result.output
        assert f"{SHOP_ENTITY_COUNT} entities" in result.output

    def test_index_invalid_url(self, cli_service):
        result = runner.invoke(app, ["index", "not a repository"])

        assert result.exit_code == 1
        assert "Invalid repository URL" in result.output

    def test_index_missing_branch(self, cli_service, shop_repo):
        result = runner.invoke(app, ["index", shop_repo.working_tree_dir, "-b", "nope"])

        assert result.exit_code == 1
        assert "Indexing failed" in result.output

    def test_status_json(self, indexed):
        _service, url, repository_id = indexed

        result = runner.invoke(app, ["status", url, "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["state"] == "UP_TO_DATE"
        assert data["repository_id"] == repository_id
        assert data["stored_commit"] == data["current_commit"]

    def test_status_not_indexed(self, cli_service, shop_repo):
        result = runner.invoke(app, ["status", shop_repo.working_tree_dir])

        assert result.exit_code == 0
        assert "Not indexed" in result.output


class TestQueries:
    def test_search_json(self, indexed):
        _service, _url, repository_id = indexed

        result = runner.invoke(app, ["search", "PaymentService", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["query"] == "PaymentService"
        assert data["total_matches"] == 1
        hit = data["results"][0]
        assert hit["name"] == "PaymentService"
        assert hit["repository_id"] == repository_id
        assert hit["score"] == 1.0

    def test_search_table(self, indexed):
        result = runner.invoke(app, ["search", "Payment", "--mode", "structural", "--limit", "2"])

        assert result.exit_code == 0, result.output
        assert "Found 2 matches" in result.output

    def test_search_no_matches(self, indexed):
        result = runner.invoke(app, ["search", "Nothing", "-r", "other-repo"])

        assert result.exit_code == 0
        assert "No matches found" in result.output

    def test_search_empty_query(self, cli_service):
        result = runner.invoke(app, ["search", "  "])

        assert result.exit_code == 1
        assert "Search failed" in result.output

    def test_search_unknown_mode(self, cli_service):
        result = runner.invoke(app, ["search", "payment", "--mode", "psychic"])

        assert result.exit_code == 1
        assert "Unknown search mode" in result.output

    def test_deps(self, indexed):
        service, _url, _repository_id = indexed

        result = runner.invoke(app, ["deps", method_id(service, "processPayment"), "-d", "outgoing"])

        assert result.exit_code == 0, result.output
        assert "CALLS" in result.output
        assert "DECLARES" not in result.output

    def test_deps_invalid_direction(self, cli_service):
        result = runner.invoke(app, ["deps", "some-id", "-d", "sideways"])

        assert result.exit_code == 1
        assert "Invalid direction" in result.output

    def test_deps_unknown_entity(self, indexed):
        result = runner.invoke(app, ["deps", "missing"])

        assert result.exit_code == 1
        assert "Unknown entity id" in result.output

    def test_explain(self, indexed):
        service, _url, _repository_id = indexed
        save = [
            m.id
            for m in service.store.find_exact_name_matches("save", EntityType.METHOD)
            if m.fully_qualified_name.endswith("PaymentRepository.save")
        ][0]

        result = runner.invoke(app, ["explain", method_id(service, "processPayment"), save])

        assert result.exit_code == 0, result.output
        assert "processPayment -[CALLS]-> save (1 hop)" in result.output


class TestOperatorCommands:
    def test_list_json(self, indexed):
        _service, url, repository_id = indexed

        result = runner.invoke(app, ["list", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [(r["id"], r["url"], r["branch"]) for r in data] == [(repository_id, url, "main")]

    def test_info(self, indexed):
        _service, _url, repository_id = indexed

        result = runner.invoke(app, ["info", repository_id])

        assert result.exit_code == 0, result.output
        assert "type_count" in result.output

    def test_info_unknown(self, cli_service):
        result = runner.invoke(app, ["info", "missing"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_remove_with_force(self, indexed):
        service, _url, repository_id = indexed

        result = runner.invoke(app, ["remove", repository_id, "--force"])

        assert result.exit_code == 0, result.output
        assert service.list_repositories() == []

    def test_remove_cancelled(self, indexed):
        service, _url, repository_id = indexed

        result = runner.invoke(app, ["remove", repository_id], input="n\n")

        assert result.exit_code == 0
        assert "Operation cancelled" in result.output
        assert len(service.list_repositories()) == 1

    def test_doctor(self, indexed):
        result = runner.invoke(app, ["doctor"])

        assert result.exit_code == 0, result.output
        assert "Schema" in result.output
        assert "Statistics" in result.output

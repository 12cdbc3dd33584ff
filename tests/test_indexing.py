"""
Tests for indexing runs and the single-flight indexing manager, driven
through the service facade against local git repositories.
"""

import threading
import time

import pytest

from kodegraph.database import close_engine
from kodegraph.entities import EntityType, InvalidRequestError
from kodegraph.indexing import (
    IndexingError,
    IndexingStep,
    IndexingTimeoutError,
    IndexState,
    RunDeadline,
)
from kodegraph.repository_manager import RepositoryNotFoundError
from kodegraph.service import build_service

from .conftest import SHOP_ENTITY_COUNT, FakeEmbedder, FlakyEmbedder, commit_files

INVOICE = """\
package com.acme.shop.model;

public class Invoice {
    private long total;
}
"""

ORDER_STATUS_PATH = "src/main/java/com/acme/shop/model/OrderStatus.java"


class CountingGate:
    """Wraps IndexingService.index_repository, counting calls and holding them at a gate."""

    def __init__(self, original, gated=True):
        self.original = original
        self.calls = 0
        self.started = threading.Event()
        self.gate = threading.Event()
        self.finished = threading.Event()
        if not gated:
            self.gate.set()
        self._lock = threading.Lock()

    def __call__(self, *args, **kwargs):
        with self._lock:
            self.calls += 1
        self.started.set()
        self.gate.wait(timeout=30)
        try:
            return self.original(*args, **kwargs)
        finally:
            self.finished.set()


class BlockingEmbedder(FakeEmbedder):
    """FakeEmbedder whose batches wait until `release` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def embed_batch(self, texts):
        self.entered.set()
        self.release.wait(timeout=30)
        return super().embed_batch(texts)


def workspace_entries(service):
    return list(service.config.storage.resolved_workspace_dir.iterdir())


@pytest.fixture
def repo_url(shop_repo):
    return shop_repo.working_tree_dir


@pytest.fixture
def flaky_service(config):
    embedder = FlakyEmbedder(failing=True)
    svc = build_service(config, embedder=embedder)
    yield svc, embedder
    svc.close()
    close_engine(config.storage.resolved_db_path)


class TestEnsureIndexed:
    """Indexing a branch and keeping it fresh."""

    def test_first_index_stores_the_graph(self, service, repo_url):
        repository_id = service.ensure_indexed(repo_url)

        info = service.repository_info(repository_id)
        assert info["type_count"] + info["method_count"] + info["field_count"] == SHOP_ENTITY_COUNT
        # the test source tree is never indexed
        assert service.store.find_exact_name_matches("PaymentServiceTest", EntityType.CLASS) == []

        status = service.check_index_status(repo_url)
        assert status.state is IndexState.UP_TO_DATE
        assert status.repository_id == repository_id
        assert status.stored_commit == status.current_commit

    def test_second_call_is_a_no_op(self, service, repo_url, monkeypatch):
        gate = CountingGate(service.manager.service.index_repository, gated=False)
        monkeypatch.setattr(service.manager.service, "index_repository", gate)

        first = service.ensure_indexed(repo_url)
        second = service.ensure_indexed(repo_url + "/")

        assert first == second
        assert gate.calls == 1

    def test_concurrent_requests_share_one_run(self, service, repo_url, monkeypatch):
        gate = CountingGate(service.manager.service.index_repository)
        monkeypatch.setattr(service.manager.service, "index_repository", gate)

        ids = []
        errors = []

        def request():
            try:
                ids.append(service.ensure_indexed(repo_url))
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=request) for _ in range(5)]
        for thread in threads:
            thread.start()
        assert gate.started.wait(timeout=10)
        # let the other requests reach the in-flight run
        time.sleep(0.3)
        assert service.check_index_status(repo_url).state is IndexState.INDEXING
        gate.gate.set()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        assert len(ids) == 5
        assert len(set(ids)) == 1
        assert gate.calls == 1

    def test_branches_index_independently(self, service, repo_url, shop_repo, monkeypatch):
        shop_repo.git.branch("develop")
        gate = CountingGate(service.manager.service.index_repository)
        monkeypatch.setattr(service.manager.service, "index_repository", gate)

        ids = {}
        errors = []

        def request(branch):
            try:
                ids[branch] = service.ensure_indexed(repo_url, branch)
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [
            threading.Thread(target=request, args=(branch,)) for branch in ("main", "develop")
        ]
        for thread in threads:
            thread.start()

        # both runs are admitted while neither has finished
        waited_until = time.monotonic() + 10
        while gate.calls < 2 and time.monotonic() < waited_until:
            time.sleep(0.05)
        assert gate.calls == 2
        assert service.check_index_status(repo_url, "main").state is IndexState.INDEXING
        assert service.check_index_status(repo_url, "develop").state is IndexState.INDEXING

        gate.gate.set()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        assert set(ids) == {"main", "develop"}
        assert ids["main"] != ids["develop"]
        assert len(service.list_repositories()) == 2

    def test_new_commit_reindexes_under_same_id(self, service, repo_url, shop_repo):
        repository_id = service.ensure_indexed(repo_url)

        commit_files(
            shop_repo,
            {"src/main/java/com/acme/shop/model/Invoice.java": INVOICE},
            "Replace OrderStatus with Invoice",
            remove=[ORDER_STATUS_PATH],
        )
        assert service.check_index_status(repo_url).state is IndexState.OUTDATED

        assert service.ensure_indexed(repo_url) == repository_id

        store = service.store
        assert store.find_exact_name_matches("OrderStatus", EntityType.CLASS) == []
        assert [t.name for t in store.find_exact_name_matches("Invoice", EntityType.CLASS)] == [
            "Invoice"
        ]
        # OrderStatus (type, isFinal, 3 constants) out; Invoice (type, field) in
        assert store.count_entities(repository_id) == SHOP_ENTITY_COUNT - 5 + 2
        assert len(service.list_repositories()) == 1

    def test_workspace_released_after_success(self, service, repo_url):
        service.ensure_indexed(repo_url)

        assert workspace_entries(service) == []

    def test_branch_from_browser_url(self, service, shop_repo, repo_url):
        shop_repo.git.checkout("-b", "develop")
        commit_files(
            shop_repo,
            {"src/main/java/com/acme/shop/model/Invoice.java": INVOICE},
            "Add invoice",
        )

        repository_id = service.ensure_indexed(f"{repo_url}/tree/develop")

        record = service.get_repository_by_url(repo_url, "develop")
        assert record is not None
        assert record.id == repository_id
        assert record.branch == "develop"
        assert service.get_repository_by_url(repo_url, "main") is None

    def test_progress_reaches_completed(self, service, repo_url):
        repository_id = service.ensure_indexed(repo_url)

        progress = service.get_indexing_progress(repository_id)
        assert progress.step is IndexingStep.COMPLETED
        assert progress.progress_percent == 100
        assert progress.error is None

    @pytest.mark.parametrize("url", ["", "   ", "not a repository", "ftp://example.com/x.git"])
    def test_invalid_url(self, service, url):
        with pytest.raises(InvalidRequestError):
            service.ensure_indexed(url)

    def test_status_of_unknown_repository(self, service, repo_url):
        assert service.check_index_status(repo_url).state is IndexState.NOT_INDEXED
        assert service.get_repository_by_url(repo_url) is None


class TestReindex:
    def test_forced_reindex_reuses_id(self, service, repo_url):
        repository_id = service.ensure_indexed(repo_url)

        result = service.reindex_repository(repository_id)

        assert result.success
        assert not result.unchanged
        assert result.repository_id == repository_id
        assert result.entities_created == SHOP_ENTITY_COUNT
        assert result.skipped_files == ["src/main/java/com/acme/shop/package-info.java"]
        assert set(result.step_durations_ms) == {"discover", "parse", "enrich", "store"}
        assert service.store.count_entities(repository_id) == SHOP_ENTITY_COUNT

    def test_unchanged_commit_skips_work(self, service, repo_url):
        repository_id = service.ensure_indexed(repo_url)
        record = service.get_repository_by_url(repo_url)

        result = service.manager.service.index_repository(
            repo_url, "main", "ignored-id", RunDeadline(60)
        )

        assert result.unchanged
        assert result.repository_id == repository_id
        assert result.commit_hash == record.last_indexed_commit

    def test_unknown_repository(self, service):
        with pytest.raises(RepositoryNotFoundError):
            service.reindex_repository("missing")


class TestFailures:
    """Failed and timed-out runs leave no partial state and can be retried."""

    def test_failed_run_then_retry(self, flaky_service, repo_url):
        svc, embedder = flaky_service

        with pytest.raises(IndexingError, match="embedding backend unavailable") as excinfo:
            svc.ensure_indexed(repo_url)

        assert excinfo.value.result is not None
        assert excinfo.value.result.success is False
        status = svc.check_index_status(repo_url)
        assert status.state is IndexState.FAILED
        assert "embedding backend unavailable" in status.error
        assert svc.list_repositories() == []
        assert workspace_entries(svc) == []

        embedder.failing = False
        repository_id = svc.ensure_indexed(repo_url)

        assert svc.check_index_status(repo_url).state is IndexState.UP_TO_DATE
        assert svc.store.count_entities(repository_id) == SHOP_ENTITY_COUNT

    def test_failed_reindex_keeps_previous_snapshot(self, flaky_service, repo_url, shop_repo):
        svc, embedder = flaky_service
        embedder.failing = False
        repository_id = svc.ensure_indexed(repo_url)
        stored = svc.get_repository_by_url(repo_url).last_indexed_commit

        commit_files(shop_repo, {"src/main/java/com/acme/shop/model/Invoice.java": INVOICE}, "Add invoice")
        embedder.failing = True
        with pytest.raises(IndexingError):
            svc.ensure_indexed(repo_url)

        assert svc.get_repository_by_url(repo_url).last_indexed_commit == stored
        assert svc.store.count_entities(repository_id) == SHOP_ENTITY_COUNT
        progress = svc.get_indexing_progress(repository_id)
        assert progress.step is IndexingStep.FAILED
        assert "embedding backend unavailable" in progress.error

    def test_missing_branch(self, service, repo_url):
        with pytest.raises(IndexingError, match="Git clone failed"):
            service.ensure_indexed(repo_url, "no-such-branch")

        assert service.check_index_status(repo_url, "no-such-branch").state is IndexState.FAILED
        assert workspace_entries(service) == []

    def test_timeout_marks_failed_and_retry_succeeds(self, service, repo_url, monkeypatch):
        gate = CountingGate(service.manager.service.index_repository)
        monkeypatch.setattr(service.manager.service, "index_repository", gate)
        service.manager.config.run_timeout_seconds = 0.5

        with pytest.raises(IndexingTimeoutError):
            service.ensure_indexed(repo_url)

        assert service.check_index_status(repo_url).state is IndexState.FAILED

        # the abandoned run observes its cancelled deadline and stops
        gate.gate.set()
        assert gate.finished.wait(timeout=30)
        assert service.list_repositories() == []

        service.manager.config.run_timeout_seconds = 60
        repository_id = service.ensure_indexed(repo_url)

        assert gate.calls == 2
        assert service.check_index_status(repo_url).state is IndexState.UP_TO_DATE
        assert service.store.count_entities(repository_id) == SHOP_ENTITY_COUNT
        assert workspace_entries(service) == []


    def test_timeout_releases_workspace_of_stuck_run(self, config, repo_url):
        embedder = BlockingEmbedder()
        svc = build_service(config, embedder=embedder)
        svc.manager.config.run_timeout_seconds = 2
        try:
            with pytest.raises(IndexingTimeoutError):
                svc.ensure_indexed(repo_url)

            # the run is still blocked inside embedding
            assert embedder.entered.is_set()
            assert not embedder.release.is_set()
            assert workspace_entries(svc) == []
            assert svc.check_index_status(repo_url).state is IndexState.FAILED
        finally:
            embedder.release.set()
            svc.close()
            close_engine(config.storage.resolved_db_path)


class TestRunDeadline:
    def test_check_passes_before_expiry(self):
        RunDeadline(60).check("parsing")

    def test_cancel_expires_immediately(self):
        deadline = RunDeadline(60)
        deadline.cancel()

        assert deadline.expired
        with pytest.raises(IndexingTimeoutError, match="before parsing"):
            deadline.check("parsing")

    def test_no_timeout(self):
        deadline = RunDeadline(None)

        assert deadline.remaining() is None
        assert not deadline.expired

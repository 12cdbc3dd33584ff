"""
Indexing orchestration for KodeGraph.

IndexingService runs one indexing pass for a repository branch:
acquire workspace -> read commit -> discover -> parse -> describe/embed ->
store (atomic replace) -> release workspace.

IndexingManager sits in front of it and owns the per-(URL, branch) state
machine: NOT_INDEXED -> INDEXING -> UP_TO_DATE, with OUTDATED and FAILED
re-entering INDEXING. Concurrent requests for the same key collapse into
one in-flight run (single-flight); every waiter gets that run's outcome.
Each run carries a deadline; on expiry the run is marked FAILED, its slot is
released and the next request retries.
"""

import threading
import time
import uuid
from collections.abc import Callable, Generator
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

import structlog

from .config import IndexingConfig
from .discovery import discover_source_files
from .embedding import EmbeddingError, EnrichmentPipeline
from .entities import InvalidRequestError
from .git_manager import (
    GitClient,
    GitOperationError,
    parse_branch_from_url,
    validate_repository_url,
)
from .graph_store import GraphStore, GraphStoreError
from .models import RepositoryRecord
from .parser import JavaSourceParser
from .repository_manager import (
    RepositoryError,
    find_repository_by_url,
    get_repository,
    normalize_url,
)

log = structlog.get_logger()


class IndexState(str, Enum):
    NOT_INDEXED = "NOT_INDEXED"
    INDEXING = "INDEXING"
    UP_TO_DATE = "UP_TO_DATE"
    OUTDATED = "OUTDATED"
    FAILED = "FAILED"


class IndexingStep(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    CLONING = "CLONING"
    PARSING = "PARSING"
    GENERATING_EMBEDDINGS = "GENERATING_EMBEDDINGS"
    STORING = "STORING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


STEP_PROGRESS = {
    IndexingStep.NOT_STARTED: 0,
    IndexingStep.CLONING: 5,
    IndexingStep.PARSING: 20,
    IndexingStep.GENERATING_EMBEDDINGS: 40,
    IndexingStep.STORING: 60,
    IndexingStep.COMPLETED: 100,
}


@dataclass
class IndexStatus:
    """Freshness of one (URL, branch) pair."""

    state: IndexState
    repository_id: str | None = None
    stored_commit: str | None = None
    current_commit: str | None = None
    last_indexed_at: datetime | None = None
    error: str | None = None


@dataclass
class IndexingProgress:
    """Live progress of the latest run for a repository."""

    repository_id: str
    step: IndexingStep
    progress_percent: int
    current_step: str
    started_at: datetime
    updated_at: datetime
    error: str | None = None


@dataclass
class IndexingResult:
    """Outcome of one indexing run."""

    repository_id: str
    success: bool = False
    commit_hash: str | None = None
    entities_created: int = 0
    relationships_created: int = 0
    embeddings_generated: int = 0
    files_discovered: int = 0
    failed_files: dict[str, str] = field(default_factory=dict)
    skipped_files: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    step_durations_ms: dict[str, int] = field(default_factory=dict)
    duration_ms: int = 0
    workspace_path: str | None = None
    unchanged: bool = False


class IndexingError(Exception):
    """Raised when an indexing run fails; carries the run's result."""

    def __init__(self, message: str, result: IndexingResult | None = None):
        super().__init__(message)
        self.result = result
        self.errors = list(result.errors) if result else [message]


class IndexingTimeoutError(IndexingError):
    """Raised when an indexing run exceeds its deadline."""

    pass


class RunDeadline:
    """Deadline and cancellation flag threaded through one run."""

    def __init__(self, timeout_seconds: float | None):
        self.timeout_seconds = timeout_seconds
        self._expires_at = (
            time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        )
        self._cancelled = threading.Event()

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self._cancelled.is_set() or (
            self._expires_at is not None and time.monotonic() >= self._expires_at
        )

    def cancel(self) -> None:
        self._cancelled.set()

    def check(self, step: str) -> None:
        """Raise IndexingTimeoutError if the run must stop before `step`."""
        if self.expired:
            raise IndexingTimeoutError(
                f"Indexing run exceeded its {self.timeout_seconds}s deadline before {step}"
            )


def new_run_token() -> str:
    return uuid.uuid4().hex[:8]


ProgressCallback = Callable[[str, IndexingStep, str], None]


class IndexingService:
    """Runs the sequential indexing pipeline for one repository branch."""

    def __init__(
        self,
        store: GraphStore,
        git_client: GitClient,
        parser: JavaSourceParser,
        pipeline: EnrichmentPipeline,
        config: IndexingConfig | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self.store = store
        self.git = git_client
        self.parser = parser
        self.pipeline = pipeline
        self.config = config or IndexingConfig()
        self.on_progress = on_progress

    def _report(self, repository_id: str, step: IndexingStep, message: str) -> None:
        if self.on_progress is not None:
            self.on_progress(repository_id, step, message)

    @staticmethod
    @contextmanager
    def _timed(result: IndexingResult, step: str) -> Generator[None, None, None]:
        start = time.monotonic()
        try:
            yield
        finally:
            result.step_durations_ms[step] = int((time.monotonic() - start) * 1000)

    def index_repository(
        self,
        url: str,
        branch: str,
        repository_id: str,
        deadline: RunDeadline | None = None,
        force: bool = False,
        run_token: str | None = None,
    ) -> IndexingResult:
        """Index one branch of a repository into the graph store.

        An existing RepositoryRecord for (url, branch) always wins over the
        supplied id, so a reindex never mints a second id. When the stored
        commit already matches the working copy and force is False, nothing
        is parsed or stored.

        Args:
            url: Repository URL or local path
            branch: Branch to index
            repository_id: Id to use when the pair has never been indexed
            deadline: Optional run deadline, checked between steps
            force: Reindex even if the stored commit is current
            run_token: Workspace suffix for this run; generated when omitted

        Returns:
            IndexingResult of a successful run

        Raises:
            IndexingTimeoutError: If the deadline expires
            IndexingError: If any fatal step fails
        """
        deadline = deadline or RunDeadline(self.config.run_timeout_seconds)
        try:
            existing = find_repository_by_url(url, branch, self.store.db_path)
        except RepositoryError as e:
            raise IndexingError(f"Indexing failed for {url} ({branch}): {e}") from e
        if existing is not None:
            repository_id = existing.id

        result = IndexingResult(repository_id=repository_id)
        started = time.monotonic()
        run_token = run_token or new_run_token()
        log.info(
            "indexing.run_started",
            repository_id=repository_id,
            url=url,
            branch=branch,
            force=force,
        )

        try:
            deadline.check("workspace")
            self._report(repository_id, IndexingStep.CLONING, f"Cloning {url} ({branch})")
            with self.git.workspace(url, branch, run_token) as workdir:
                result.workspace_path = str(workdir)
                result.commit_hash = self.git.current_commit_hash(workdir)

                if (
                    not force
                    and existing is not None
                    and existing.last_indexed_commit == result.commit_hash
                ):
                    result.unchanged = True
                    result.success = True
                    log.info(
                        "indexing.run_unchanged",
                        repository_id=repository_id,
                        commit=result.commit_hash,
                    )
                    self._report(repository_id, IndexingStep.COMPLETED, "Already up to date")
                    return result

                deadline.check("discovery")
                self._report(repository_id, IndexingStep.PARSING, "Parsing source files")
                with self._timed(result, "discover"):
                    files = discover_source_files(
                        workdir, excluded_dirs=self.config.excluded_dirs
                    )
                result.files_discovered = len(files)

                with self._timed(result, "parse"):
                    batch = self.parser.parse_files(files, workdir, repository_id)
                result.failed_files = dict(batch.failures)
                result.skipped_files = list(batch.skipped)

                deadline.check("embedding")
                self._report(
                    repository_id,
                    IndexingStep.GENERATING_EMBEDDINGS,
                    f"Embedding {len(batch.entities)} types",
                )
                with self._timed(result, "enrich"):
                    result.embeddings_generated = self.pipeline.enrich(
                        batch.entities, checkpoint=deadline.check
                    )

                deadline.check("storing")
                self._report(repository_id, IndexingStep.STORING, "Storing entities")
                with self._timed(result, "store"):
                    summary = self.store.replace_repository_contents(
                        repository_id=repository_id,
                        url=url,
                        branch=branch,
                        language=self.config.language,
                        commit_hash=result.commit_hash,
                        types=batch.entities,
                    )
                result.entities_created = summary.entities_created
                result.relationships_created = summary.relationships_created
                result.success = True

        except IndexingTimeoutError as e:
            result.errors.append(str(e))
            self._fail(result, started)
            raise IndexingTimeoutError(str(e), result) from e
        except (
            GitOperationError,
            EmbeddingError,
            GraphStoreError,
            RepositoryError,
            OSError,
        ) as e:
            result.errors.append(str(e))
            self._fail(result, started)
            raise IndexingError(f"Indexing failed for {url} ({branch}): {e}", result) from e
        finally:
            result.duration_ms = int((time.monotonic() - started) * 1000)

        self._report(repository_id, IndexingStep.COMPLETED, "Indexing completed")
        log.info(
            "indexing.run_completed",
            repository_id=repository_id,
            commit=result.commit_hash,
            files=result.files_discovered,
            failed_files=len(result.failed_files),
            entities=result.entities_created,
            relationships=result.relationships_created,
            embeddings=result.embeddings_generated,
            duration_ms=result.duration_ms,
        )
        return result

    def _fail(self, result: IndexingResult, started: float) -> None:
        result.success = False
        result.duration_ms = int((time.monotonic() - started) * 1000)
        self._report(result.repository_id, IndexingStep.FAILED, "; ".join(result.errors))
        log.error(
            "indexing.run_failed",
            repository_id=result.repository_id,
            errors=result.errors,
            step_durations_ms=result.step_durations_ms,
            duration_ms=result.duration_ms,
        )


@dataclass
class _InflightRun:
    key: str
    repository_id: str
    future: Future
    deadline: RunDeadline
    workspace: Path


class IndexingManager:
    """Single-flight front door for indexing requests."""

    def __init__(
        self,
        service: IndexingService,
        config: IndexingConfig | None = None,
    ):
        self.service = service
        self.store = service.store
        self.git = service.git
        self.config = config or service.config
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="kodegraph-index"
        )
        self._lock = threading.Lock()
        self._inflight: dict[str, _InflightRun] = {}
        self._failures: dict[str, str] = {}
        self._progress: dict[str, IndexingProgress] = {}
        service.on_progress = self._record_progress

    @staticmethod
    def make_key(url: str, branch: str) -> str:
        return f"{normalize_url(url)}:{branch}"

    def _resolve_request(self, url: str, branch: str | None) -> tuple[str, str]:
        if not url or not url.strip():
            raise InvalidRequestError("Repository URL must not be empty")
        url, url_branch = parse_branch_from_url(url)
        branch = (branch or url_branch or self.config.default_branch).strip()
        if not branch:
            raise InvalidRequestError("Branch must not be empty")
        if not validate_repository_url(url):
            raise InvalidRequestError(f"Invalid repository URL: {url}")
        return url, branch

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _record_progress(self, repository_id: str, step: IndexingStep, message: str) -> None:
        now = datetime.now()
        with self._lock:
            previous = self._progress.get(repository_id)
            started_at = now
            if previous is not None and step is not IndexingStep.CLONING:
                started_at = previous.started_at
            percent = STEP_PROGRESS.get(step)
            if percent is None:
                percent = previous.progress_percent if previous else 0
            self._progress[repository_id] = IndexingProgress(
                repository_id=repository_id,
                step=step,
                progress_percent=percent,
                current_step=message,
                started_at=started_at,
                updated_at=now,
                error=message if step is IndexingStep.FAILED else None,
            )

    def get_indexing_progress(self, repository_id: str) -> IndexingProgress | None:
        with self._lock:
            return self._progress.get(repository_id)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _active_run(self, key: str) -> _InflightRun | None:
        with self._lock:
            run = self._inflight.get(key)
            if run is not None and run.future.done():
                return None
            return run

    def check_index_status(self, url: str, branch: str | None = None) -> IndexStatus:
        """Freshness of a (URL, branch) pair.

        Args:
            url: Repository URL in any equivalent spelling
            branch: Branch; defaults to the configured default branch

        Returns:
            IndexStatus with stored and current commit hashes
        """
        url, branch = self._resolve_request(url, branch)
        key = self.make_key(url, branch)
        record = find_repository_by_url(url, branch, self.store.db_path)

        run = self._active_run(key)
        if run is not None:
            return IndexStatus(
                state=IndexState.INDEXING,
                repository_id=record.id if record else run.repository_id,
                stored_commit=record.last_indexed_commit if record else None,
                last_indexed_at=record.last_indexed_at if record else None,
            )

        with self._lock:
            failure = self._failures.get(key)

        if record is None:
            if failure is not None:
                return IndexStatus(state=IndexState.FAILED, error=failure)
            return IndexStatus(state=IndexState.NOT_INDEXED)

        current = self.git.remote_commit_hash(url, branch)
        if failure is not None:
            state = IndexState.FAILED
        elif record.last_indexed_commit and record.last_indexed_commit == current:
            state = IndexState.UP_TO_DATE
        else:
            state = IndexState.OUTDATED

        return IndexStatus(
            state=state,
            repository_id=record.id,
            stored_commit=record.last_indexed_commit,
            current_commit=current,
            last_indexed_at=record.last_indexed_at,
            error=failure,
        )

    def get_repository_by_url(
        self, url: str, branch: str | None = None
    ) -> RepositoryRecord | None:
        """RepositoryRecord for a (URL, branch) pair, or None."""
        url, branch = self._resolve_request(url, branch)
        return find_repository_by_url(url, branch, self.store.db_path)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def ensure_indexed(self, url: str, branch: str | None = None) -> str:
        """Make sure a repository branch is indexed at its current commit.

        Blocks until the in-flight run for the key (new or already running)
        completes.

        Returns:
            Repository id (stable across reindexes)

        Raises:
            InvalidRequestError: For an empty or unsupported URL
            IndexingTimeoutError: If the run exceeds its deadline
            IndexingError: If the run fails
        """
        url, branch = self._resolve_request(url, branch)
        key = self.make_key(url, branch)

        run = self._active_run(key)
        if run is None:
            status = self.check_index_status(url, branch)
            if status.state is IndexState.UP_TO_DATE:
                log.debug("indexing.up_to_date", repository_id=status.repository_id)
                return status.repository_id
            run = self._admit(
                key,
                url,
                branch,
                status.repository_id or str(uuid.uuid4()),
                force=status.state is IndexState.FAILED,
            )
        else:
            log.info("indexing.joined_inflight", key=key, repository_id=run.repository_id)

        return self._await(run).repository_id

    def reindex_repository(self, repository_id: str) -> IndexingResult:
        """Force a full reindex of a known repository, reusing its id.

        Raises:
            RepositoryNotFoundError: If the id is unknown
            IndexingError: If the run fails
        """
        record = get_repository(repository_id, self.store.db_path)
        key = self.make_key(record.url, record.branch)
        run = self._admit(key, record.url, record.branch, record.id, force=True)
        return self._await(run)

    def _admit(
        self, key: str, url: str, branch: str, repository_id: str, force: bool
    ) -> _InflightRun:
        # Atomic insert-if-absent: the lock covers both the lookup and the insert
        with self._lock:
            run = self._inflight.get(key)
            if run is not None and not run.future.done():
                return run

            deadline = RunDeadline(self.config.run_timeout_seconds)
            token = new_run_token()
            future = self._executor.submit(
                self.service.index_repository,
                url,
                branch,
                repository_id,
                deadline,
                force,
                token,
            )
            run = _InflightRun(
                key=key,
                repository_id=repository_id,
                future=future,
                deadline=deadline,
                workspace=self.git.workspace_path(url, branch, token),
            )
            self._inflight[key] = run

        future.add_done_callback(lambda f, run=run: self._finish(run, f))
        return run

    def _finish(self, run: _InflightRun, future: Future) -> None:
        with self._lock:
            if self._inflight.get(run.key) is not run:
                # timed out already; _await recorded the failure
                return
            del self._inflight[run.key]
            if future.cancelled():
                self._failures[run.key] = "Indexing run was cancelled"
            elif future.exception() is not None:
                self._failures[run.key] = str(future.exception())
            else:
                self._failures.pop(run.key, None)

    def _await(self, run: _InflightRun) -> IndexingResult:
        try:
            return run.future.result(timeout=run.deadline.remaining())
        except FutureTimeoutError as e:
            run.deadline.cancel()
            message = (
                f"Indexing run for {run.key} exceeded its "
                f"{run.deadline.timeout_seconds}s deadline"
            )
            with self._lock:
                if self._inflight.get(run.key) is run:
                    del self._inflight[run.key]
                self._failures[run.key] = message
            # the worker may be stuck past its last deadline check; its
            # working copy goes now, before the caller sees the failure
            self.git.cleanup(run.workspace)
            self._record_progress(run.repository_id, IndexingStep.FAILED, message)
            log.error("indexing.run_timed_out", key=run.key, repository_id=run.repository_id)
            raise IndexingTimeoutError(message) from e

    def shutdown(self, wait: bool = True) -> None:
        """Cancel deadlines of in-flight runs and stop the worker pool."""
        with self._lock:
            runs = list(self._inflight.values())
        for run in runs:
            run.deadline.cancel()
        self._executor.shutdown(wait=wait, cancel_futures=True)


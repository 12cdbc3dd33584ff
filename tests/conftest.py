"""
Shared fixtures: sample Java sources, local git repositories and a
deterministic embedder, so tests run without network access or model
downloads.
"""

import hashlib
import re
import shutil
import tempfile
import threading
from collections.abc import Sequence
from pathlib import Path

import pytest
from git import Actor, Repo

from kodegraph.config import KodeGraphConfig
from kodegraph.database import close_engine
from kodegraph.embedding import EmbeddingError, EnrichmentPipeline
from kodegraph.graph_store import GraphStore
from kodegraph.logging import configure_logging
from kodegraph.parser import JavaSourceParser
from kodegraph.service import build_service

PAYMENT_SERVICE = """\
package com.acme.shop.service;

import org.springframework.stereotype.Service;

@Service
public class PaymentService implements PaymentGateway {
    private final PaymentRepository repository;
    private int retries = 3, timeout;

    public PaymentService(PaymentRepository repository) {
        this.repository = repository;
    }

    @Transactional
    public Receipt processPayment(Order order, String currency) {
        validate(order);
        return repository.save(order.toReceipt(currency));
    }

    private void validate(Order order) {
        if (order == null) {
            throw new IllegalArgumentException("order");
        }
    }
}
"""

PAYMENT_REPOSITORY = """\
package com.acme.shop.repository;

@Repository
public interface PaymentRepository extends CrudRepository<Receipt, Long> {
    Receipt save(Receipt receipt);

    List<Receipt> findByCustomer(String customerId);
}
"""

ORDER_STATUS = """\
package com.acme.shop.model;

public enum OrderStatus {
    PENDING, PAID, SHIPPED;

    public boolean isFinal() {
        return this == SHIPPED;
    }
}
"""

PAYMENT_SERVICE_TEST = """\
package com.acme.shop.service;

public class PaymentServiceTest {
    void processesPayment() {}
}
"""

SHOP_FILES = {
    "src/main/java/com/acme/shop/service/PaymentService.java": PAYMENT_SERVICE,
    "src/main/java/com/acme/shop/repository/PaymentRepository.java": PAYMENT_REPOSITORY,
    "src/main/java/com/acme/shop/model/OrderStatus.java": ORDER_STATUS,
    "src/main/java/com/acme/shop/package-info.java": "package com.acme.shop;\n",
    "src/test/java/com/acme/shop/service/PaymentServiceTest.java": PAYMENT_SERVICE_TEST,
    "README.md": "# Shop\n",
}

# 3 types, 5 methods, 6 fields (3 of them enum constants)
SHOP_ENTITY_COUNT = 14

AUTHOR = Actor("Test Author", "author@example.com")


class FakeEmbedder:
    """Deterministic bag-of-words embedder implementing the Embedder protocol."""

    dimension = 32

    def __init__(self) -> None:
        self.batches = 0
        self._lock = threading.Lock()

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        with self._lock:
            self.batches += 1
        return [self.vector(text) for text in texts]

    def vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dimension
        for word in re.findall(r"[a-z]+", text.lower()):
            digest = hashlib.md5(word.encode()).digest()
            vec[digest[0] % self.dimension] += 1.0
        if not any(vec):
            vec[0] = 1.0
        return vec


class FlakyEmbedder(FakeEmbedder):
    """FakeEmbedder that raises EmbeddingError while `failing` is set."""

    def __init__(self, failing: bool = True) -> None:
        super().__init__()
        self.failing = failing

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        if self.failing:
            raise EmbeddingError("embedding backend unavailable")
        return super().embed_batch(texts)


class FixedEmbedder:
    """Returns the same vector for every text."""

    def __init__(self, vector: Sequence[float]) -> None:
        self._vector = list(vector)

    def embed(self, text: str) -> list[float]:
        return list(self._vector)

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        return [list(self._vector) for _ in texts]


def commit_files(
    repo: Repo,
    files: dict[str, str],
    message: str,
    remove: Sequence[str] = (),
) -> str:
    """Write, stage and commit files; return the new commit hash."""
    root = Path(repo.working_tree_dir)
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        repo.index.add([relative])
    if remove:
        repo.index.remove(list(remove), working_tree=True)
    return repo.index.commit(message, author=AUTHOR, committer=AUTHOR).hexsha


def make_git_repo(path: Path, files: dict[str, str], branch: str = "main") -> Repo:
    """Create a local git repository with one commit on `branch`."""
    path.mkdir(parents=True, exist_ok=True)
    repo = Repo.init(path)
    repo.git.checkout("-b", branch)
    with repo.config_writer() as writer:
        writer.set_value("user", "name", AUTHOR.name)
        writer.set_value("user", "email", AUTHOR.email)
    commit_files(repo, files, "Initial commit")
    return repo


@pytest.fixture(autouse=True)
def quiet_logging():
    """Route structured logs through a stderr handler instead of stdout."""
    configure_logging(level="WARNING")


@pytest.fixture
def temp_dir():
    """Temporary directory removed after the test."""
    path = Path(tempfile.mkdtemp())
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def db_path(temp_dir):
    path = temp_dir / "graph.sqlite"
    yield str(path)
    close_engine(path)


@pytest.fixture
def store(db_path):
    return GraphStore(db_path)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def shop_types():
    """Parsed and enriched entities of the sample shop sources."""
    parser = JavaSourceParser()
    types = [
        parser.parse_source(PAYMENT_SERVICE, "src/main/java/com/acme/shop/service/PaymentService.java", "repo-1"),
        parser.parse_source(PAYMENT_REPOSITORY, "src/main/java/com/acme/shop/repository/PaymentRepository.java", "repo-1"),
        parser.parse_source(ORDER_STATUS, "src/main/java/com/acme/shop/model/OrderStatus.java", "repo-1"),
    ]
    EnrichmentPipeline(FakeEmbedder()).enrich(types)
    return types


@pytest.fixture
def populated_store(store, shop_types):
    store.replace_repository_contents(
        repository_id="repo-1",
        url="https://github.com/acme/shop",
        branch="main",
        language="Java",
        commit_hash="c1",
        types=shop_types,
    )
    return store


@pytest.fixture
def shop_repo(temp_dir):
    """Local git repository holding the sample shop sources."""
    return make_git_repo(temp_dir / "origin" / "shop", SHOP_FILES)


@pytest.fixture
def config(temp_dir):
    return KodeGraphConfig(
        storage={"home": temp_dir / "home"},
        indexing={"max_workers": 4, "run_timeout_seconds": 60},
    )


@pytest.fixture
def service(config, embedder):
    svc = build_service(config, embedder=embedder)
    yield svc
    svc.close()
    close_engine(config.storage.resolved_db_path)

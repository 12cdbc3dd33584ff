"""
Tests for git_manager using real local repositories.

Clones are taken from repositories created on the fly, so the tests need
git but no network access.
"""

from pathlib import Path

import pytest

from kodegraph.git_manager import (
    GitClient,
    GitOperationError,
    is_local_path,
    parse_branch_from_url,
    validate_repository_url,
)

from .conftest import commit_files


@pytest.fixture
def client(temp_dir):
    return GitClient(temp_dir / "workspaces")


class TestUrlHandling:
    """URL validation and branch extraction."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/octocat/Hello-World.git",
            "https://github.com/octocat/Hello-World",
            "git@github.com:octocat/Hello-World.git",
            "git@github.com:octocat/Hello-World",
            "https://gitlab.com/gitlab-org/gitlab.git",
            "https://gitlab.com/gitlab-org/sub/group/project",
            "git@gitlab.com:gitlab-org/gitlab.git",
            "https://bitbucket.org/atlassian/bitbucket.git",
            "git@bitbucket.org:atlassian/bitbucket.git",
            "https://git.example.com/team/project.git",
            "ssh://git@git.example.com/team/project",
            "file:///srv/git/project",
        ],
    )
    def test_valid_urls(self, url):
        assert validate_repository_url(url), f"URL should be valid: {url}"

    @pytest.mark.parametrize(
        "url",
        [
            "",
            None,
            "not-a-url",
            "https://example.com",
            "https://github.com",
            "https://github.com/",
            "https://github.com/user",
            "ftp://github.com/user/repo.git",
            "https://github.com/user/repo/with/extra/path",
        ],
    )
    def test_invalid_urls(self, url):
        assert not validate_repository_url(url), f"URL should be invalid: {url}"

    def test_local_directory_is_valid(self, shop_repo, temp_dir):
        assert is_local_path(shop_repo.working_tree_dir)
        assert validate_repository_url(shop_repo.working_tree_dir)
        assert not is_local_path(str(temp_dir / "missing"))

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://github.com/acme/shop/tree/develop", ("https://github.com/acme/shop", "develop")),
            ("https://github.com/acme/shop/tree/feature/x/", ("https://github.com/acme/shop", "feature/x")),
            ("https://gitlab.com/acme/shop/-/tree/main", ("https://gitlab.com/acme/shop", "main")),
            ("https://github.com/acme/shop", ("https://github.com/acme/shop", None)),
            ("  https://github.com/acme/shop.git ", ("https://github.com/acme/shop.git", None)),
        ],
    )
    def test_parse_branch_from_url(self, url, expected):
        assert parse_branch_from_url(url) == expected


class TestGitClient:
    """Working copies, commit hashes and cleanup."""

    def test_workspace_path_is_deterministic(self, client):
        first = client.workspace_path("https://github.com/acme/shop", "main")
        second = client.workspace_path("https://GitHub.com/acme/shop", "main")
        other_branch = client.workspace_path("https://github.com/acme/shop", "develop")
        per_run = client.workspace_path("https://github.com/acme/shop", "main", "run1")

        assert first == second
        assert first != other_branch
        assert per_run.name == f"{first.name}-run1"
        assert first.parent == client.workspace_dir

    def test_clone_and_commit_hash(self, client, shop_repo):
        target = client.workspace_path(shop_repo.working_tree_dir, "main")

        client.clone(shop_repo.working_tree_dir, "main", target)

        assert (target / "README.md").exists()
        assert client.current_commit_hash(target) == shop_repo.head.commit.hexsha

    def test_pull_brings_new_commits(self, client, shop_repo):
        target = client.workspace_path(shop_repo.working_tree_dir, "main")
        client.clone(shop_repo.working_tree_dir, "main", target)

        assert client.pull(target, "main") is False

        new_commit = commit_files(shop_repo, {"NOTES.md": "notes\n"}, "Add notes")
        assert client.pull(target, "main") is True
        assert client.current_commit_hash(target) == new_commit

    def test_pull_on_invalid_working_copy(self, client):
        plain = client.workspace_dir / "plain"
        plain.mkdir()

        with pytest.raises(GitOperationError, match="not a valid git repository"):
            client.pull(plain, "main")

    def test_commit_hash_of_non_repository(self, client, temp_dir):
        with pytest.raises(GitOperationError):
            client.current_commit_hash(temp_dir)

    def test_remote_commit_hash(self, client, shop_repo, temp_dir):
        assert client.remote_commit_hash(shop_repo.working_tree_dir, "main") == (
            shop_repo.head.commit.hexsha
        )
        assert client.remote_commit_hash(shop_repo.working_tree_dir, "missing") is None
        assert client.remote_commit_hash(str(temp_dir / "nowhere"), "main") is None

    def test_clone_missing_branch_leaves_nothing(self, client, shop_repo):
        target = client.workspace_path(shop_repo.working_tree_dir, "nope")

        with pytest.raises(GitOperationError, match="Git clone failed"):
            client.clone(shop_repo.working_tree_dir, "nope", target)

        assert not target.exists()

    def test_workspace_is_released(self, client, shop_repo):
        with client.workspace(shop_repo.working_tree_dir, "main", "run1") as workdir:
            assert (workdir / ".git").exists()
            seen = Path(workdir)

        assert not seen.exists()
        assert list(client.workspace_dir.iterdir()) == []

    def test_workspace_released_on_error(self, client, shop_repo):
        with pytest.raises(RuntimeError):
            with client.workspace(shop_repo.working_tree_dir, "main") as workdir:
                seen = Path(workdir)
                raise RuntimeError("run failed")

        assert not seen.exists()

    def test_leftover_workspace_is_refreshed(self, client, shop_repo):
        target = client.workspace_path(shop_repo.working_tree_dir, "main")
        client.clone(shop_repo.working_tree_dir, "main", target)
        new_commit = commit_files(shop_repo, {"NOTES.md": "notes\n"}, "Add notes")

        with client.workspace(shop_repo.working_tree_dir, "main") as workdir:
            assert client.current_commit_hash(workdir) == new_commit

    def test_local_source_is_never_touched(self, client, shop_repo):
        origin = Path(shop_repo.working_tree_dir)

        with client.workspace(str(origin), "main"):
            pass

        assert (origin / ".git").exists()
        assert (origin / "README.md").exists()

    def test_cleanup_refuses_outside_paths(self, client, shop_repo):
        with pytest.raises(GitOperationError, match="outside the workspace"):
            client.cleanup(Path(shop_repo.working_tree_dir))

        assert Path(shop_repo.working_tree_dir).exists()

    def test_cleanup_of_missing_path(self, client):
        client.cleanup(client.workspace_dir / "absent")

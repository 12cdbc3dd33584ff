"""
Git operations for KodeGraph indexing runs.

This module provides the GitClient class used by the indexing manager to
acquire a scoped working copy of a repository branch (clone if absent, pull
if present), read commit hashes locally and remotely, and release the
working copy when the run ends. Uses GitPython for git operations.

Local repositories are never indexed in place: they are cloned into the
workspace directory like remote ones, so cleanup can never touch the
user's checkout.
"""

import hashlib
import re
import shutil
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

import structlog
from git import FetchInfo, GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.cmd import Git

log = structlog.get_logger()

URL_PATTERNS = [
    # GitHub patterns
    r"^https://github\.com/[\w\-\.]+/[\w\-\.]+(?:\.git)?/?$",
    r"^git@github\.com:[\w\-\.]+/[\w\-\.]+(?:\.git)?$",
    # GitLab patterns
    r"^https://gitlab\.com/[\w\-\.]+(?:/[\w\-\.]+)+(?:\.git)?/?$",
    r"^git@gitlab\.com:[\w\-\.]+(?:/[\w\-\.]+)+(?:\.git)?$",
    # Bitbucket patterns
    r"^https://bitbucket\.org/[\w\-\.]+/[\w\-\.]+(?:\.git)?/?$",
    r"^git@bitbucket\.org:[\w\-\.]+/[\w\-\.]+(?:\.git)?$",
    # Generic git patterns
    r"^https?://[^/]+/.*\.git/?$",
    r"^git@[^:]+:.*\.git$",
    r"^ssh://git@[^/]+/.*$",
    r"^file://.+$",
]

_TREE_BRANCH_RE = re.compile(r"^(?P<base>.+?)/(?:-/)?tree/(?P<branch>[^?#]+?)/?$")


class GitOperationError(Exception):
    """Raised when a clone, pull or commit lookup fails."""

    pass


def _explain_git_error(prefix: str, error: GitCommandError) -> str:
    message = f"{prefix}: {str(error)}"
    if "Authentication failed" in str(error):
        message += "\nNote: For private repositories, ensure your SSH keys are configured or use a personal access token."
    elif "Repository not found" in str(error) or "does not appear to be a git repository" in str(error):
        message += "\nThe repository URL may be incorrect or the repository may not exist."
    elif "Network is unreachable" in str(error) or "Temporary failure" in str(error):
        message += "\nNetwork error. Please check your internet connection and try again."
    return message


def is_local_path(url: str) -> bool:
    """True when the URL names an existing directory on this machine."""
    if "://" in url or url.startswith("git@"):
        return False
    return Path(url).expanduser().is_dir()


def validate_repository_url(url: str) -> bool:
    """
    Validate if URL is a supported git repository location.

    Supports GitHub, GitLab, Bitbucket, generic git URLs and existing
    local directories.

    Args:
        url: Repository URL to validate

    Returns:
        True if URL is valid, False otherwise
    """
    if not url or not isinstance(url, str) or not url.strip():
        return False

    url = url.strip()
    if is_local_path(url):
        return True
    return any(re.match(pattern, url) for pattern in URL_PATTERNS)


def parse_branch_from_url(url: str) -> tuple[str, str | None]:
    """Split a browser URL such as .../repo/tree/develop into (repo URL, branch).

    Returns:
        (url without the tree suffix, branch) or (url, None) when absent
    """
    match = _TREE_BRANCH_RE.match(url.strip())
    if match is None or is_local_path(url):
        return url.strip(), None
    return match.group("base"), match.group("branch")


class GitClient:
    """
    Working-copy management for indexing runs.

    Each (url, branch, run token) maps to one deterministic directory under
    the workspace root. A run acquires it with workspace() and the directory
    is deleted when the block exits, whether the run succeeded or not.
    """

    def __init__(self, workspace_dir: str | Path):
        """
        Initialize the client.

        Args:
            workspace_dir: Root directory for scratch working copies
        """
        self.workspace_dir = Path(workspace_dir).expanduser()
        self.workspace_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _source(url: str) -> str:
        if is_local_path(url):
            return str(Path(url).expanduser().resolve())
        return url.strip()

    def workspace_path(self, url: str, branch: str, run_id: str | None = None) -> Path:
        """Deterministic working-copy location for a (url, branch[, run]) triple."""
        digest = hashlib.sha1(f"{url.strip().lower()}#{branch}".encode()).hexdigest()[:16]
        name = re.sub(r"[^\w\-]", "_", url.rstrip("/").rsplit("/", 1)[-1])[:40] or "repo"
        suffix = f"-{run_id}" if run_id else ""
        return self.workspace_dir / f"{name}-{digest}{suffix}"

    def clone(self, url: str, branch: str, local_path: Path) -> Path:
        """
        Clone one branch of a repository.

        Returns:
            Path of the new working copy

        Raises:
            GitOperationError: If git clone fails; partial clones are removed
        """
        try:
            Repo.clone_from(self._source(url), local_path, branch=branch)
        except GitCommandError as e:
            self.cleanup(local_path)
            raise GitOperationError(_explain_git_error("Git clone failed", e)) from e

        if not (local_path / ".git").exists():
            self.cleanup(local_path)
            raise GitOperationError(
                "Clone appeared to succeed but repository not found locally"
            )

        log.info("git.cloned", url=url, branch=branch, path=str(local_path))
        return local_path

    def pull(self, local_path: Path, branch: str) -> bool:
        """
        Refresh an existing working copy to the tip of a branch.

        Idempotent on an already up-to-date checkout.

        Returns:
            True if new commits were pulled

        Raises:
            GitOperationError: If the working copy is invalid or git fails
        """
        try:
            repo = Repo(local_path)
            fetch_info = repo.remotes.origin.fetch()
            has_changes = any(info.flags != FetchInfo.HEAD_UPTODATE for info in fetch_info)

            repo.git.checkout(branch)
            if has_changes:
                repo.remotes.origin.pull(branch)
            return has_changes

        except GitCommandError as e:
            raise GitOperationError(_explain_git_error("Git update failed", e)) from e
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise GitOperationError(
                f"Working copy '{local_path}' is corrupted or not a valid git repository"
            ) from e

    def current_commit_hash(self, local_path: Path) -> str:
        """
        Commit hash checked out in a working copy.

        Raises:
            GitOperationError: If the working copy has no readable HEAD
        """
        try:
            return Repo(local_path).head.commit.hexsha
        except (InvalidGitRepositoryError, NoSuchPathError, ValueError) as e:
            raise GitOperationError(f"Cannot read HEAD of '{local_path}': {str(e)}") from e

    def remote_commit_hash(self, url: str, branch: str) -> str | None:
        """
        Tip commit of a branch without cloning (git ls-remote).

        Returns:
            Commit hash, or None when the remote cannot be queried
        """
        try:
            output = Git().ls_remote(self._source(url), f"refs/heads/{branch}")
        except GitCommandError as e:
            log.warning("git.ls_remote_failed", url=url, branch=branch, error=str(e))
            return None

        for line in output.splitlines():
            parts = line.split()
            if len(parts) == 2 and parts[1] == f"refs/heads/{branch}":
                return parts[0]
        return None

    def cleanup(self, local_path: Path) -> None:
        """Delete a working copy; only paths inside the workspace root are touched."""
        local_path = Path(local_path)
        if not local_path.exists():
            return
        if self.workspace_dir.resolve() not in local_path.resolve().parents:
            raise GitOperationError(f"Refusing to delete '{local_path}' outside the workspace")
        shutil.rmtree(local_path, ignore_errors=True)
        if local_path.exists():
            log.warning("git.cleanup_incomplete", path=str(local_path))

    @contextmanager
    def workspace(
        self, url: str, branch: str, run_id: str | None = None
    ) -> Generator[Path, None, None]:
        """
        Acquire a working copy for the duration of a block.

        Clones when the directory is absent, pulls when a valid copy is left
        over, and always deletes the directory on exit.

        Args:
            url: Repository URL or local path
            branch: Branch to check out
            run_id: Optional run token; distinct runs for one branch then
                never share a directory

        Yields:
            Path of the working copy
        """
        local_path = self.workspace_path(url, branch, run_id)
        try:
            if (local_path / ".git").exists():
                try:
                    self.pull(local_path, branch)
                except GitOperationError:
                    log.warning("git.stale_workspace_recloned", path=str(local_path))
                    self.cleanup(local_path)
                    self.clone(url, branch, local_path)
            else:
                self.cleanup(local_path)
                self.clone(url, branch, local_path)
            yield local_path
        finally:
            self.cleanup(local_path)
            log.debug("git.workspace_released", path=str(local_path))

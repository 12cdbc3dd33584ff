"""Source file discovery for indexing runs."""

import os
from collections.abc import Iterable
from pathlib import Path

DEFAULT_EXCLUDED_DIRS = ("test", "tests", ".git", "target", "build", "node_modules")


def discover_source_files(
    root: Path,
    extension: str = ".java",
    excluded_dirs: Iterable[str] = DEFAULT_EXCLUDED_DIRS,
) -> list[Path]:
    """Find source files under a working copy, skipping test and build directories.

    Any path component matching an excluded directory name removes the whole
    subtree, so src/test/java/... never reaches the parser.

    Args:
        root: Working copy root
        extension: File suffix of the target language
        excluded_dirs: Directory names to prune

    Returns:
        Sorted list of absolute file paths
    """
    excluded = set(excluded_dirs)
    found: list[Path] = []

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in excluded]
        for filename in filenames:
            if filename.endswith(extension):
                found.append(Path(dirpath) / filename)

    return sorted(found)

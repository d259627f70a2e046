# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Path helpers shared by the mapper, watcher and service layers."""

import os
from pathlib import Path
from typing import Iterable, Union

# Maximum filepath length to prevent DoS
MAX_FILEPATH_LENGTH = 4096

# Directory holding the store, config and logs inside a workspace
ACL_DIR_NAME = ".acl"


def validate_filepath(filepath: str) -> None:
    """Validate a caller-supplied filepath before any file operation.

    Args:
        filepath: Path to validate.

    Raises:
        ValueError: If filepath contains control characters or exceeds
            the length limit.
    """
    if any(ord(c) < 32 and c not in ("\t", "\n", "\r") for c in filepath):
        raise ValueError("Invalid characters in filepath")

    if len(filepath) > MAX_FILEPATH_LENGTH:
        raise ValueError(f"Filepath too long: {len(filepath)} > {MAX_FILEPATH_LENGTH}")


def resolve_in_workspace(workspace: Union[str, Path], filepath: str) -> str:
    """Turn a workspace-relative or absolute path into an absolute path string.

    The result is normalized but symlinks are not followed, so file identity
    stays the path the caller sees.
    """
    return os.path.normpath(os.path.join(str(workspace), filepath))


def relative_to_workspace(workspace: Union[str, Path], filepath: str) -> str:
    """Workspace-relative form of ``filepath`` using forward slashes.

    Paths outside the workspace are returned unchanged.
    """
    rel = os.path.relpath(filepath, str(workspace))
    if rel.startswith(".."):
        return filepath
    if rel == ".":
        return "."
    return rel.replace(os.sep, "/")


def _in_zone(relative_path: str, zone: str) -> bool:
    zone = zone.strip("/")
    return relative_path == zone or relative_path.startswith(zone + "/")


def is_excluded(
    relative_path: str,
    include_zones: Iterable[str],
    exclude_zones: Iterable[str],
) -> bool:
    """Check a workspace-relative path against include/exclude zones.

    When include zones are configured, anything outside all of them is
    excluded. Exclude zones then match the zone itself or anything below it.

    Args:
        relative_path: Path relative to the workspace root.
        include_zones: Subdirectories to include (empty means everything).
        exclude_zones: Subdirectories to skip.

    Returns:
        True if the path should be skipped.
    """
    normalized = relative_path.replace("\\", "/")
    includes = list(include_zones)
    if includes:
        # Parent directories of an include zone must stay walkable
        inside = any(
            _in_zone(normalized, zone) or zone.strip("/").startswith(normalized + "/")
            for zone in includes
        )
        if not inside:
            return True

    return any(_in_zone(normalized, zone) for zone in exclude_zones)

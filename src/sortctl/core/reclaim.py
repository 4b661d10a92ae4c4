# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Artifact reclamation between sweep points.

Sort outputs can be as large as the dataset. A backend process may still hold
an output file open after the run, in which case unlinking alone leaves the
blocks allocated, so every file is truncated to zero bytes before removal.
"""

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def artifact_size(path: Path) -> int:
    """Total size in bytes of a file or directory tree (0 if missing)."""
    if path.is_symlink() or path.is_file():
        return path.lstat().st_size
    if not path.is_dir():
        return 0

    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += (Path(root) / name).lstat().st_size
            except OSError:
                continue
    return total


def _truncate_tree(path: Path) -> None:
    if path.is_symlink():
        return
    if path.is_file():
        os.truncate(path, 0)
        return
    for root, _dirs, files in os.walk(path):
        for name in files:
            file_path = Path(root) / name
            if not file_path.is_symlink() and file_path.is_file():
                os.truncate(file_path, 0)


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def reclaim_artifact(path: Path | str | None) -> bool:
    """Truncate, remove and sync one artifact path.

    Args:
        path: File or directory produced by a run; may be None or missing

    Returns:
        True if the path is gone afterwards (including when it never existed),
        False if reclamation failed. Failures are logged, never raised.
    """
    if path is None:
        return True

    path = Path(path)
    if not path.exists() and not path.is_symlink():
        logger.debug("No artifact at %s", path)
        return True

    size = artifact_size(path)
    logger.info("Reclaiming artifact %s (%.2f GB)", path, size / 1_073_741_824)
    try:
        _truncate_tree(path)
    except OSError as e:
        # Unlinking may still succeed where truncation was refused
        logger.error("Failed to truncate artifact %s before removal: %s", path, e)

    try:
        os.sync()
        _remove(path)
        os.sync()
    except OSError as e:
        logger.error("Failed to reclaim artifact %s: %s (disk usage may grow across the sweep)", path, e)
        return False

    logger.info("Artifact %s removed and synced", path)
    return True


def clear_directory(path: Path | str | None) -> bool:
    """Reclaim every entry inside a directory, keeping the directory itself.

    Used for spill/temp directories that backends expect to exist.
    """
    if path is None:
        return True
    path = Path(path)
    if not path.is_dir():
        return True

    ok = True
    for child in path.iterdir():
        ok = reclaim_artifact(child) and ok
    return ok

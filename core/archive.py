"""
Project archiving helpers.

The project tree is zipped once per run and unpacked on every node.
"""

import logging
import os
import zipfile
from typing import Iterable, Tuple


logger = logging.getLogger(__name__)

DEFAULT_EXCLUDES: Tuple[str, ...] = (".git", "__pycache__", ".venv", "node_modules", ".pytest_cache")


def archive_project(
    project_dir: str,
    archive_path: str,
    excludes: Iterable[str] = DEFAULT_EXCLUDES
) -> int:
    """
    Zip a project tree.

    Args:
        project_dir: Root of the project to archive
        archive_path: Destination zip file
        excludes: Directory or file names skipped anywhere in the tree

    Returns:
        Number of files written to the archive
    """
    excluded = set(excludes)
    archive_abs = os.path.abspath(archive_path)
    written = 0

    with zipfile.ZipFile(archive_path, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
        for root, dirs, files in os.walk(project_dir):
            dirs[:] = sorted(d for d in dirs if d not in excluded)
            for name in sorted(files):
                if name in excluded:
                    continue
                path = os.path.join(root, name)
                if os.path.abspath(path) == archive_abs:
                    continue
                zf.write(path, os.path.relpath(path, project_dir))
                written += 1

    logger.debug(f"Archived {written} files from {project_dir} into {archive_path}")
    return written


def extract_archive(archive_path: str, destination: str):
    """
    Unpack an archive, overwriting existing files.

    Args:
        archive_path: Zip file produced by archive_project
        destination: Directory to unpack into (created if missing)
    """
    os.makedirs(destination, exist_ok=True)
    with zipfile.ZipFile(archive_path, 'r') as zf:
        zf.extractall(destination)

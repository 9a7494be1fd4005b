"""
Content fingerprints used for change detection.
"""

from __future__ import annotations

import hashlib
import logging
import os
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 65536


def hash_bytes(data: bytes) -> str:
    """Return the SHA-256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def compute_file_hash(file_path: str) -> Optional[str]:
    """
    Compute the SHA-256 hex digest of a file's contents.

    Parameters
    ----------
    file_path:
        Path to the file.

    Returns
    -------
    str or None
        64-character hex digest, or None if the file cannot be read.
    """
    h = hashlib.sha256()
    try:
        with open(file_path, "rb") as fh:
            for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
                h.update(chunk)
    except OSError as exc:
        logger.debug("Cannot hash %s: %s", file_path, exc)
        return None
    return h.hexdigest()


def hash_files(root: str, rel_paths: Iterable[str]) -> dict[str, str]:
    """
    Fingerprint every path in *rel_paths* (relative to *root*).

    Files that cannot be read (deleted between the walk and the hash, for
    example) are left out of the result, so they reconcile as deleted.
    """
    hashes: dict[str, str] = {}
    for rel_path in rel_paths:
        digest = compute_file_hash(os.path.join(root, rel_path))
        if digest is not None:
            hashes[rel_path] = digest
    return hashes

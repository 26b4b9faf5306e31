"""Content digests that address cached extraction results."""

import hashlib
from pathlib import Path


DIGEST_LENGTH = 16

# Drawing scans are often tens of megabytes
_READ_CHUNK = 1024 * 1024


def file_sha256(path: Path | str, chunk_size: int = _READ_CHUNK) -> str:
    """Hex SHA-256 of a file, read in chunks."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as handle:
        while chunk := handle.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


def image_digest(image_path: Path | str, length: int = DIGEST_LENGTH) -> str:
    """
    Short content digest of a page image.

    Depends only on the file's bytes, so a renamed or copied page maps to
    the same cache entries.

    Raises:
        FileNotFoundError: If the image does not exist.
        ValueError: If ``length`` is outside 1..64.
    """
    if not 1 <= length <= 64:
        raise ValueError(f"Digest length must be between 1 and 64, got {length}")
    return file_sha256(image_path)[:length]

"""File operation utilities."""
import contextlib
import hashlib
import os
import tempfile
from pathlib import Path

from loguru import logger


def safe_write_file(file_path: Path, content: str) -> None:
    """
    Safely write content to a file using a temporary file to ensure atomic writes.

    The final path shows either its previous content or the new content, never a
    partially written file.

    Args:
        file_path: Path to the target file
        content: Content to write to the file

    Raises:
        OSError: If the directory cannot be created or the write fails
    """
    file_path.parent.mkdir(parents=True, exist_ok=True)

    # Create a temporary file in the same directory so the rename stays on one filesystem
    temp_fd, temp_path = tempfile.mkstemp(dir=str(file_path.parent), prefix=f".{file_path.name}.", suffix=".tmp")
    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        # Rename temporary file to target file (atomic on POSIX, replaces on Windows)
        Path(temp_path).replace(file_path)
    except Exception:
        with contextlib.suppress(OSError):
            Path(temp_path).unlink()
        raise


def safe_read_file(file_path: Path) -> str:
    """
    Safely read content from a file.

    Args:
        file_path: Path to the file to read

    Returns:
        The content of the file as a string

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    try:
        return file_path.read_text(encoding="utf-8")
    except Exception:
        logger.exception("Error reading file {}", file_path)
        raise


def safe_remove_file(file_path: Path) -> bool:
    """
    Remove a file, treating a missing file as success.

    Returns:
        bool: True if a file was removed, False if there was nothing to remove
    """
    try:
        file_path.unlink()
        return True
    except FileNotFoundError:
        logger.debug("File {} already absent, nothing to remove", file_path)
        return False


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def file_hash(file_path: Path) -> str | None:
    """Hash a file's text content, or None if it cannot be read."""
    try:
        return content_hash(file_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError):
        return None

"""
Local file storage for task attachments.

Files are written under `settings.UPLOAD_DIR/<task_id>/` with a random name
and served back from the `/uploads` static mount.
"""

import logging
import uuid
from pathlib import Path

import settings

logger = logging.getLogger(__name__)


def save_attachment_file(task_id: int, original_filename: str, content: bytes) -> tuple[str, str]:
    """
    Write attachment bytes to the task's upload directory.

    Returns:
        tuple: (stored filename, public URL path)
    """
    task_dir = Path(settings.UPLOAD_DIR) / str(task_id)
    task_dir.mkdir(parents=True, exist_ok=True)

    file_ext = Path(original_filename or "").suffix.lower()
    stored_filename = f"{uuid.uuid4()}{file_ext}"
    filepath = task_dir / stored_filename

    try:
        filepath.write_bytes(content)
    except OSError:
        if filepath.exists():
            filepath.unlink()
        raise

    logger.debug(f"Stored attachment for task {task_id} at {filepath} ({len(content)} bytes)")
    return stored_filename, f"/uploads/{task_id}/{stored_filename}"


def delete_attachment_file(task_id: int, stored_filename: str) -> None:
    """Remove a stored attachment file if it exists."""
    filepath = Path(settings.UPLOAD_DIR) / str(task_id) / stored_filename
    if filepath.exists():
        filepath.unlink()
        logger.info(f"Removed attachment file {filepath}")

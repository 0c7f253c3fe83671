"""
Storage Service
Uploads are staged in TEMP_UPLOAD_DIR, then moved under UPLOAD_DIR/<folder>
where the /uploads static mount serves them.
"""
from pathlib import Path
from typing import List, Optional
import logging
import os
import shutil
import uuid

import aiofiles
from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from eqms.core.config import settings, is_allowed_file, get_file_size_mb, get_upload_path
from eqms.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


async def save_temp_upload(file: UploadFile) -> Path:
    """Validate and write an upload to the temp directory"""
    if not file.filename or not is_allowed_file(file.filename):
        raise ValidationError(
            f"File type not allowed: {file.filename}. Allowed: {', '.join(settings.ALLOWED_EXTENSIONS)}"
        )

    contents = await file.read()
    if len(contents) > settings.MAX_UPLOAD_SIZE:
        max_size_mb = get_file_size_mb(settings.MAX_UPLOAD_SIZE)
        raise ValidationError(f"File too large: {file.filename}. Maximum: {max_size_mb:.2f} MB")

    temp_dir = Path(settings.TEMP_UPLOAD_DIR)
    temp_dir.mkdir(parents=True, exist_ok=True)
    temp_path = temp_dir / f"{uuid.uuid4()}{Path(file.filename).suffix.lower()}"

    async with aiofiles.open(temp_path, "wb") as f:
        await f.write(contents)

    return temp_path


def public_url(folder: str, filename: str) -> str:
    base = settings.PUBLIC_BASE_URL.rstrip("/")
    return f"{base}/uploads/{folder}/{filename}"


async def upload_file(local_path: Path, folder: str) -> str:
    """Move a staged file into permanent storage and return its public URL"""
    local_path = Path(local_path)
    target = get_upload_path(local_path.name, folder)
    await run_in_threadpool(shutil.move, str(local_path), str(target))
    logger.info(f"Stored upload {target}")
    return public_url(folder, target.name)


def remove_temp_file(path: Optional[Path]) -> None:
    """Best-effort temp cleanup; failures are logged and never raised"""
    if path is None:
        return
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning(f"Failed to delete temp file {path}: {e}")


async def upload_files(files: Optional[List[UploadFile]], folder: str) -> List[str]:
    """
    Stage, validate and store every file
    All files are validated before any is stored; temp files are always cleaned up.
    """
    staged: List[Path] = []
    try:
        for file in files or []:
            staged.append(await save_temp_upload(file))
        return [await upload_file(path, folder) for path in staged]
    finally:
        for path in staged:
            remove_temp_file(path)


def delete_stored_file(url: str) -> None:
    """Remove a stored file given its public URL; best effort"""
    marker = "/uploads/"
    if marker not in url:
        return
    relative = url.split(marker, 1)[1]
    path = Path(settings.UPLOAD_DIR) / relative
    try:
        if path.exists():
            path.unlink()
    except OSError as e:
        logger.warning(f"Failed to delete stored file {path}: {e}")

import logging
import os
import re
import uuid
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, File, UploadFile

from config import settings
from errors import StorageError, ValidationError
from .auth import CurrentUserDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["upload"])

PUBLIC_PREFIX = "/uploads"


def stored_name(filename: str) -> str:
    """Unique on-disk name: ``<uuid4>-<basename with whitespace as '-'>``."""
    base = os.path.basename(filename or "") or "image"
    safe = re.sub(r"\s+", "-", base)
    return f"{uuid.uuid4()}-{safe}"


@router.post("/upload")
async def upload_images(
    current: CurrentUserDep,
    images: Optional[List[UploadFile]] = File(default=None),
):
    """
    Store uploaded images and return the public paths that
    donations can reference.
    """
    if not images:
        raise ValidationError("No files provided")

    upload_dir = Path(settings.upload_dir)
    uploaded: List[str] = []
    try:
        upload_dir.mkdir(parents=True, exist_ok=True)
        for image in images:
            content = await image.read()
            if not image.filename or not content:
                continue
            name = stored_name(image.filename)
            (upload_dir / name).write_bytes(content)
            uploaded.append(f"{PUBLIC_PREFIX}/{name}")
    except OSError:
        logger.exception("Upload failed for user %s", current.id)
        raise StorageError("Upload failed")

    if not uploaded:
        raise ValidationError("No valid files were uploaded")

    logger.info("User %s uploaded %d file(s)", current.id, len(uploaded))
    return {"message": "Files uploaded successfully", "files": uploaded}

"""
InputAgent HTTP routes — POST /api/upload

Stores a user-supplied tax PDF under settings.upload_dir for the next
ingestion run. Nothing is indexed here.
"""
from __future__ import annotations

import logging
import re
import time
from pathlib import Path

from fastapi import APIRouter, File, HTTPException, UploadFile

from taxexplainer.agents.input_agent.schemas import UploadResponse
from taxexplainer.config import settings

router = APIRouter(prefix="/api", tags=["input_agent"])
logger = logging.getLogger(__name__)

ALLOWED_MIMES = {"application/pdf"}
_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def safe_filename(original: str | None) -> str:
    """Timestamp-prefixed name with everything outside [A-Za-z0-9._-] replaced by '_'."""
    name = _UNSAFE_CHARS.sub("_", Path(original or "document.pdf").name)
    return f"{int(time.time() * 1000)}_{name}"


@router.post("/upload", response_model=UploadResponse)
async def upload_document(document: UploadFile = File(...)) -> UploadResponse:
    """
    Upload a PDF for later ingestion.

    Returns:
        200: {message, filename, size}
        413: FILE_TOO_LARGE (nothing written)
        415: INVALID_MIME_TYPE (nothing written)
    """
    # Read all bytes first — never write to disk before validating
    contents = await document.read()

    max_bytes = settings.max_upload_mb * 1024 * 1024
    if len(contents) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File size exceeds maximum allowed {settings.max_upload_mb} MB",
        )

    # MIME detection from content bytes (NOT document.content_type — spoofable)
    import magic  # lazy import — needs libmagic at runtime

    detected_mime = magic.from_buffer(contents[:2048], mime=True)
    if detected_mime not in ALLOWED_MIMES:
        raise HTTPException(
            status_code=415,
            detail=f"Unsupported file type '{detected_mime}'. Only PDF files are allowed",
        )

    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = safe_filename(document.filename)
    (upload_dir / filename).write_bytes(contents)

    logger.info("Document uploaded filename=%s size=%d", filename, len(contents))
    return UploadResponse(
        message="File uploaded successfully. Run the ingestion command to index it.",
        filename=filename,
        size=len(contents),
    )

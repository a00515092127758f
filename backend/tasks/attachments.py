"""
Attachment lifecycle for tasks.

Uploaded files reach disk before the task row that references them is
committed. Every stored file therefore registers its own deletion with a
`Compensation`; if anything later in the request fails (validation, the
attachment cap, the database commit) the block unwinds and no orphaned file
or partial update survives.
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from fastapi import UploadFile
from sqlalchemy.orm import Session

import models
from errors import TooManyAttachments, ValidationError
from storage import LocalFileStore

logger = logging.getLogger(__name__)

MAX_ATTACHMENTS_PER_TASK = 3
PDF_MIME_TYPE = "application/pdf"


class Compensation:
    """
    Collects undo actions and runs them, newest first, if the block fails.

    Example:
        with Compensation() as undo:
            undo.add(db.rollback)
            stored = store.store(data, ".pdf")
            undo.add(store.delete, stored.path)
            db.commit()
    """

    def __init__(self):
        self._actions: List[tuple] = []

    def add(self, action: Callable, *args) -> None:
        self._actions.append((action, args))

    def __enter__(self) -> "Compensation":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            logger.info(f"Request failed with {exc_type.__name__}, running {len(self._actions)} compensation(s)")
            self.run()
        self._actions.clear()
        return False  # Never suppress the original error

    def run(self) -> None:
        while self._actions:
            action, args = self._actions.pop()
            try:
                action(*args)
            except Exception:
                logger.exception(f"Compensation {getattr(action, '__name__', action)!r} failed")


def validate_upload(upload: UploadFile) -> None:
    """Only PDF files are accepted; octet-stream is trusted when the extension is .pdf."""
    extension = Path(upload.filename or "").suffix.lower()
    if upload.content_type == PDF_MIME_TYPE:
        return
    if upload.content_type == "application/octet-stream" and extension == ".pdf":
        return
    logger.info(f"Rejected upload '{upload.filename}' with content type {upload.content_type}")
    raise ValidationError("Only PDF files are allowed")


def present_uploads(uploads: Optional[Sequence[UploadFile]]) -> List[UploadFile]:
    """Drop empty file parts some clients send when no file was chosen."""
    return [upload for upload in uploads or [] if upload is not None and upload.filename]


def ensure_attachment_capacity(current: int, incoming: int) -> None:
    """
    Raises:
        TooManyAttachments: if `current + incoming` exceeds the per-task cap
    """
    if current + incoming > MAX_ATTACHMENTS_PER_TASK:
        logger.info(f"Attachment cap exceeded: {current} existing + {incoming} new")
        raise TooManyAttachments(f"Maximum {MAX_ATTACHMENTS_PER_TASK} attachments allowed per task")


async def stage_uploads(
    store: LocalFileStore,
    uploads: Sequence[UploadFile],
    owner_id: int,
    compensation: Compensation,
) -> List[models.TaskAttachment]:
    """
    Validate and store uploads, returning unattached attachment records.

    Files go to the uploader's sub-directory. Each stored file schedules its
    own removal on `compensation`, so the caller only has to run the rest of
    the mutation inside the same block.
    """
    if len(uploads) > MAX_ATTACHMENTS_PER_TASK:
        raise TooManyAttachments(f"Too many files. Maximum {MAX_ATTACHMENTS_PER_TASK} files allowed per task")

    for upload in uploads:
        validate_upload(upload)

    staged = []
    for upload in uploads:
        stored = await store.save_upload(upload, subdir=str(owner_id))
        compensation.add(store.delete, stored.path)
        staged.append(
            models.TaskAttachment(
                filename=stored.filename,
                original_name=Path(upload.filename).name,
                mime_type=PDF_MIME_TYPE,
                size=stored.size,
                path=stored.path,
            )
        )
    logger.debug(f"Staged {len(staged)} upload(s) for user {owner_id}")
    return staged


def remove_attachment(
    db: Session, store: LocalFileStore, task: models.Task, attachment: models.TaskAttachment
) -> bool:
    """
    Detach the attachment record, commit, then delete its file.

    The file is only touched once the record is gone, so a failed commit
    leaves both in place. A file that is already gone is not an error.

    Returns:
        True if a file was removed from disk
    """
    attachment_id, task_id, path = attachment.id, task.id, attachment.path
    task.attachments.remove(attachment)
    db.commit()

    removed = store.delete(path)
    if not removed:
        logger.info(f"Attachment {attachment_id} of task {task_id} had no file on disk")
    return removed


def delete_task_and_files(db: Session, store: LocalFileStore, task: models.Task) -> int:
    """
    Delete `task` with its comments and attachment records, then every
    attachment file. Returns how many files existed.
    """
    task_id = task.id
    paths = [attachment.path for attachment in task.attachments]
    db.delete(task)
    db.commit()

    removed = sum(1 for path in paths if store.delete(path))
    logger.debug(f"Removed {removed} attachment file(s) of task {task_id}")
    return removed

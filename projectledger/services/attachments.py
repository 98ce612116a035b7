"""
projectledger/services/attachments.py

Attachment store: quota-checked uploads bound to invoices.

Flow used by the UI:
1) upload each file (POST /api/storage/upload-invoice-attachment) -> filePath
2) create the invoice with attachments=[filePath, ...] -> bind_paths()

Uploads are independent of each other. A rejected upload (quota exceeded)
writes nothing and creates no row, so it never blocks the other files.
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Iterable

from flask import current_app, url_for
from sqlalchemy import func
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from ..audit import log_action, serialize_model
from ..errors import ForbiddenError, NotFoundError, QuotaExceededError, ValidationError
from ..extensions import db
from ..models import Customer, Invoice, InvoiceAttachment, InvoiceStatus, User
from ..utils import format_bytes
from . import unit_of_work

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# Storage backend
# ---------------------------------------------------------------------
class LocalStorage:
    """Files under a root folder, addressed by relative POSIX paths."""

    def __init__(self, root: str | os.PathLike):
        self.root = Path(root)

    def _resolve(self, file_path: str) -> Path:
        target = (self.root / file_path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValidationError("Invalid file path", {"filePath": file_path})
        return target

    def save(self, file: FileStorage, *, customer_id: int, entity_id: str) -> str:
        name = secure_filename(file.filename or "") or "attachment"
        relative = f"customers/{customer_id}/invoices/attachments/{entity_id}/{uuid.uuid4().hex}-{name}"
        target = self._resolve(relative)
        target.parent.mkdir(parents=True, exist_ok=True)
        file.save(target)
        return relative

    def delete(self, file_path: str) -> None:
        target = self._resolve(file_path)
        if target.exists():
            target.unlink()


def get_storage() -> LocalStorage:
    return LocalStorage(current_app.config["UPLOAD_FOLDER"])


# ---------------------------------------------------------------------
# Quota
# ---------------------------------------------------------------------
def storage_limit(customer: Customer) -> int:
    if customer.storage_limit_bytes is not None:
        return int(customer.storage_limit_bytes)
    return int(current_app.config["STORAGE_QUOTA_BYTES"])


def storage_used(customer_id: int) -> int:
    used = (
        db.session.query(func.coalesce(func.sum(InvoiceAttachment.file_size), 0))
        .filter(InvoiceAttachment.customer_id == customer_id)
        .scalar()
    )
    return int(used or 0)


def check_quota(customer: Customer, incoming_size: int = 0) -> dict:
    """Current usage plus whether `incoming_size` more bytes fit."""
    used = storage_used(customer.id)
    limit = storage_limit(customer)
    available = max(limit - used, 0)
    return {
        "used": used,
        "limit": limit,
        "available": available,
        "percentage": round(used / limit * 100, 2) if limit else 100.0,
        "canUpload": incoming_size <= available,
        "usedFormatted": format_bytes(used),
        "limitFormatted": format_bytes(limit),
    }


def _stream_size(file: FileStorage) -> int:
    stream = file.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


# ---------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------
def upload(
    customer: Customer,
    actor: User,
    file: FileStorage | None,
    *,
    invoice: Invoice | None = None,
    description: str | None = None,
) -> tuple[InvoiceAttachment, dict]:
    """
    Store one file and record its metadata.

    Raises QuotaExceededError before anything is written when the file does
    not fit the remaining quota.
    """
    if file is None or not file.filename:
        raise ValidationError("No file provided", {"field": "file"})

    if invoice is not None and invoice.status == InvoiceStatus.PAID:
        raise ForbiddenError("Cannot add attachments to a paid invoice")

    size = _stream_size(file)
    quota = check_quota(customer, size)
    if not quota["canUpload"]:
        raise QuotaExceededError("Storage quota exceeded", {"quota": quota})

    storage = get_storage()
    file_path = storage.save(
        file,
        customer_id=customer.id,
        entity_id=str(invoice.id) if invoice is not None else "pending",
    )

    try:
        with unit_of_work():
            attachment = InvoiceAttachment(
                invoice=invoice,
                customer_id=customer.id,
                file_path=file_path,
                file_name=file.filename,
                file_size=size,
                mime_type=file.mimetype or "application/octet-stream",
                description=description,
                uploaded_by=actor.id,
            )
            db.session.add(attachment)
            db.session.flush()
            log_action(attachment, "CREATE", actor=actor, after=serialize_model(attachment))
    except Exception:
        storage.delete(file_path)
        raise

    logger.info("Stored attachment %s (%s bytes) for customer %s", file_path, size, customer.id)
    return attachment, check_quota(customer)


def bind_paths(invoice: Invoice, customer_id: int, paths: Iterable[str]) -> list[InvoiceAttachment]:
    """
    Attach previously uploaded files to an invoice.

    Only files uploaded by the same tenant and not yet bound elsewhere are
    accepted; anything else is skipped with a warning. Runs inside the
    caller's transaction.
    """
    bound = []
    for path in paths:
        if not path:
            continue
        attachment = InvoiceAttachment.query.filter_by(customer_id=customer_id, file_path=path).first()
        if attachment is None:
            logger.warning("No uploaded file found for attachment path %s", path)
            continue
        if attachment.invoice_id is not None and attachment.invoice_id != invoice.id:
            logger.warning("Attachment %s already belongs to invoice %s", path, attachment.invoice_id)
            continue
        attachment.invoice = invoice
        bound.append(attachment)
    return bound


def remove_files(paths: Iterable[str]) -> None:
    """
    Delete stored files after their rows are gone.

    Storage failures are logged and skipped: the database is already
    consistent and an orphaned file only costs disk space.
    """
    storage = get_storage()
    for path in paths:
        try:
            storage.delete(path)
        except OSError:
            logger.exception("Failed to delete stored file %s", path)


def delete_attachment(customer: Customer, actor: User, file_path: str | None) -> None:
    if not file_path:
        raise ValidationError("filePath is required", {"field": "filePath"})

    attachment = InvoiceAttachment.query.filter_by(customer_id=customer.id, file_path=file_path).first()
    if attachment is None:
        raise NotFoundError("Attachment not found")
    if attachment.invoice is not None and attachment.invoice.status == InvoiceStatus.PAID:
        raise ForbiddenError("Attachments of a paid invoice cannot be deleted")

    with unit_of_work():
        before = serialize_model(attachment)
        log_action(attachment, "DELETE", actor=actor, before=before)
        db.session.delete(attachment)

    remove_files([file_path])


def attachment_to_dict(attachment: InvoiceAttachment) -> dict:
    uploader = attachment.uploader
    return {
        "id": attachment.id,
        "invoiceId": attachment.invoice_id,
        "fileName": attachment.file_name,
        "filePath": attachment.file_path,
        "fileSize": attachment.file_size,
        "fileSizeFormatted": format_bytes(attachment.file_size),
        "mimeType": attachment.mime_type,
        "description": attachment.description,
        "uploadedAt": attachment.uploaded_at.isoformat() if attachment.uploaded_at else None,
        "uploadedBy": (
            {"id": uploader.id, "name": uploader.name, "email": uploader.email} if uploader else None
        ),
        "url": url_for("storage.download_file", file_path=attachment.file_path),
    }


def list_for_invoice(invoice: Invoice) -> list[dict]:
    return [attachment_to_dict(a) for a in invoice.attachments]

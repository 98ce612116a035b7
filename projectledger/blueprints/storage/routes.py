"""
projectledger/blueprints/storage/routes.py

Attachment storage routes under /api/storage.

- POST   /upload-invoice-attachment  (multipart: file, invoiceId?, description?)
- GET    /quota
- DELETE /delete-invoice-attachment  {filePath}
- GET    /files/<path>               download (tenant checked)
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, send_from_directory
from flask_login import current_user, login_required

from ...errors import NotFoundError
from ...models import Invoice, InvoiceAttachment, Project
from ...services import attachments as attachment_store
from ...utils import clean_str, parse_optional_int

storage_bp = Blueprint("storage", __name__, url_prefix="/api/storage")


def _tenant_invoice(invoice_id: int | None) -> Invoice | None:
    if invoice_id is None:
        return None
    invoice = (
        Invoice.query.join(Project, Project.id == Invoice.project_id)
        .filter(Invoice.id == invoice_id, Project.customer_id == current_user.customer_id)
        .first()
    )
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


@storage_bp.route("/upload-invoice-attachment", methods=["POST"])
@login_required
def upload_invoice_attachment():
    invoice = _tenant_invoice(parse_optional_int(request.form.get("invoiceId")))
    attachment, quota = attachment_store.upload(
        current_user.customer,
        current_user,
        request.files.get("file"),
        invoice=invoice,
        description=clean_str(request.form.get("description")),
    )
    return (
        jsonify(
            {
                "success": True,
                "data": {
                    "filePath": attachment.file_path,
                    "fileName": attachment.file_name,
                    "fileSize": attachment.file_size,
                    "attachmentId": attachment.id,
                    "quota": quota,
                },
            }
        ),
        201,
    )


@storage_bp.route("/quota", methods=["GET"])
@login_required
def quota():
    return jsonify({"success": True, "data": attachment_store.check_quota(current_user.customer)})


@storage_bp.route("/delete-invoice-attachment", methods=["DELETE"])
@login_required
def delete_invoice_attachment():
    data = request.get_json(silent=True) or {}
    attachment_store.delete_attachment(current_user.customer, current_user, data.get("filePath"))
    return jsonify(
        {
            "success": True,
            "message": "Attachment deleted",
            "data": {"quota": attachment_store.check_quota(current_user.customer)},
        }
    )


@storage_bp.route("/files/<path:file_path>", methods=["GET"])
@login_required
def download_file(file_path: str):
    attachment = InvoiceAttachment.query.filter_by(
        customer_id=current_user.customer_id, file_path=file_path
    ).first()
    if attachment is None:
        raise NotFoundError("File not found")
    return send_from_directory(
        current_app.config["UPLOAD_FOLDER"],
        attachment.file_path,
        mimetype=attachment.mime_type,
        as_attachment=True,
        download_name=attachment.file_name,
    )

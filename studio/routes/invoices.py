# routes/invoices.py
from flask import request, jsonify, send_file

from . import invoices_bp
from ..models.user import Permission
from ..schemas.finance_schemas import InvoiceCreateSchema, InvoiceUpdateSchema, InvoiceStatusSchema
from ..security import current_actor, permission_required
from ..services.invoice_service import InvoiceService


@invoices_bp.route("", methods=["GET"])
@permission_required(Permission.MANAGE_FINANCES)
def list_invoices():
    invoices = InvoiceService.list_invoices(
        client_id=request.args.get("client_id", type=int),
        status=request.args.get("status")
    )
    return jsonify([i.serialize() for i in invoices]), 200


@invoices_bp.route("", methods=["POST"])
@permission_required(Permission.MANAGE_FINANCES)
def create_invoice():
    """
    Create a draft invoice. The invoice number is allocated from the
    invoice sequence (INV-0001, INV-0002, ...).

    JSON Payload (example):
    {
      "client_id": 4,
      "line_items": [
        {"description": "10 Session Pack", "quantity": 1, "unit_price": "1000.00"}
      ],
      "tax_amount": "50.00",
      "payment_terms": 14
    }
    """
    data = InvoiceCreateSchema().load(request.get_json() or {})
    invoice = InvoiceService.create_invoice(data, actor=current_actor())
    return jsonify({"message": "Invoice created", "invoice": invoice.serialize()}), 201


@invoices_bp.route("/<int:invoice_id>", methods=["GET"])
@permission_required(Permission.MANAGE_FINANCES)
def get_invoice(invoice_id):
    return jsonify(InvoiceService.get_invoice(invoice_id).serialize()), 200


@invoices_bp.route("/<int:invoice_id>", methods=["PUT"])
@permission_required(Permission.MANAGE_FINANCES)
def update_invoice(invoice_id):
    data = InvoiceUpdateSchema().load(request.get_json() or {})
    invoice = InvoiceService.update_invoice(invoice_id, data)
    return jsonify(invoice.serialize()), 200


@invoices_bp.route("/<int:invoice_id>/status", methods=["PATCH"])
@permission_required(Permission.MANAGE_FINANCES)
def update_invoice_status(invoice_id):
    """
    JSON Payload:
    {
      "status": "paid",
      "paid_date": "2025-03-01"
    }

    409 for a transition the invoice cannot make (e.g. paid -> draft).
    """
    data = InvoiceStatusSchema().load(request.get_json() or {})
    invoice = InvoiceService.update_invoice_status(invoice_id, data["status"], paid_date=data.get("paid_date"))
    return jsonify(invoice.serialize()), 200


@invoices_bp.route("/<int:invoice_id>", methods=["DELETE"])
@permission_required(Permission.MANAGE_FINANCES)
def delete_invoice(invoice_id):
    InvoiceService.delete_invoice(invoice_id)
    return jsonify({"message": "Invoice deleted"}), 200


@invoices_bp.route("/<int:invoice_id>/pdf", methods=["GET"])
@permission_required(Permission.MANAGE_FINANCES)
def invoice_pdf(invoice_id):
    invoice = InvoiceService.get_invoice(invoice_id)
    return send_file(
        InvoiceService.render_invoice_pdf(invoice),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"{invoice.invoice_number}.pdf"
    )

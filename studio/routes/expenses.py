# routes/expenses.py
from flask import request, jsonify

from . import expenses_bp
from ..models.user import Permission
from ..schemas.finance_schemas import ExpenseSchema, DateRangeSchema
from ..security import current_actor, permission_required
from ..services.expense_service import ExpenseService


@expenses_bp.route("", methods=["GET"])
@permission_required(Permission.MANAGE_FINANCES)
def list_expenses():
    """Query params: start_date, end_date, category, status"""
    params = DateRangeSchema().load(request.args)
    expenses = ExpenseService.list_expenses(
        start_date=params["start_date"],
        end_date=params["end_date"],
        category=params["category"],
        status=params["status"]
    )
    return jsonify([e.serialize() for e in expenses]), 200


@expenses_bp.route("", methods=["POST"])
@permission_required(Permission.MANAGE_FINANCES)
def create_expense():
    """
    JSON Payload (example):
    {
      "category": "rent",
      "amount": "8000.00",
      "description": "March rent",
      "is_recurring": true,
      "recurring_frequency": "monthly"
    }
    """
    data = ExpenseSchema().load(request.get_json() or {})
    expense = ExpenseService.create_expense(data, actor=current_actor())
    return jsonify(expense.serialize()), 201


@expenses_bp.route("/summary", methods=["GET"])
@permission_required(Permission.MANAGE_FINANCES)
def expense_summary():
    params = DateRangeSchema().load(request.args)
    totals = ExpenseService.totals_by_category(params["start_date"], params["end_date"])
    return jsonify({category: str(total) for category, total in totals.items()}), 200


@expenses_bp.route("/<int:expense_id>", methods=["GET"])
@permission_required(Permission.MANAGE_FINANCES)
def get_expense(expense_id):
    return jsonify(ExpenseService.get_expense(expense_id).serialize()), 200


@expenses_bp.route("/<int:expense_id>", methods=["PUT"])
@permission_required(Permission.MANAGE_FINANCES)
def update_expense(expense_id):
    data = ExpenseSchema(partial=True).load(request.get_json() or {})
    expense = ExpenseService.update_expense(expense_id, data)
    return jsonify(expense.serialize()), 200


@expenses_bp.route("/<int:expense_id>", methods=["DELETE"])
@permission_required(Permission.MANAGE_FINANCES)
def delete_expense(expense_id):
    ExpenseService.delete_expense(expense_id)
    return jsonify({"message": "Expense deleted"}), 200

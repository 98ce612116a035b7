"""
projectledger/blueprints/projects/routes.py

Projects, budget and expenses under /api/developer-dashboard.

- GET/POST          /projects
- GET/PATCH         /projects/<pid>
- GET/POST          /projects/<pid>/expenses
- PATCH/PUT/DELETE  /projects/<pid>/expenses/<eid>      (manual expenses only)
- GET/POST          /projects/<pid>/budget
- PATCH/PUT/DELETE  /projects/<pid>/budget/<item_id>
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ...security import load_project, owner_required
from ...services import expenses as expense_service
from ...services import projects as project_service
from ...utils import snake_keys

projects_bp = Blueprint("projects", __name__, url_prefix="/api/developer-dashboard")


# ---------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------
@projects_bp.route("/projects", methods=["GET"])
@login_required
def list_projects():
    projects = project_service.list_projects(current_user.customer_id).all()
    return jsonify({"data": [p.to_dict() for p in projects]})


@projects_bp.route("/projects", methods=["POST"])
@login_required
@owner_required
def create_project():
    data = snake_keys(request.get_json(silent=True))
    project = project_service.create_project(current_user.customer, current_user, data)
    return jsonify({"data": project.to_dict()}), 201


@projects_bp.route("/projects/<int:project_id>", methods=["GET"])
@login_required
def project_detail(project_id: int):
    project = load_project(project_id)
    return jsonify({"data": project_service.project_detail(project)})


@projects_bp.route("/projects/<int:project_id>", methods=["PATCH", "PUT"])
@login_required
@owner_required
def update_project(project_id: int):
    project = load_project(project_id)
    data = snake_keys(request.get_json(silent=True))
    project = project_service.update_project(project, current_user, data)
    return jsonify({"data": project_service.project_detail(project)})


# ---------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------
@projects_bp.route("/projects/<int:project_id>/expenses", methods=["GET"])
@login_required
def list_expenses(project_id: int):
    project = load_project(project_id)
    expenses = expense_service.list_expenses(project.id, category=request.args.get("category")).all()
    return jsonify(
        {
            "data": [e.to_dict() for e in expenses],
            "total": sum(float(e.total_amount) for e in expenses),
        }
    )


@projects_bp.route("/projects/<int:project_id>/expenses", methods=["POST"])
@login_required
def create_expense(project_id: int):
    project = load_project(project_id)
    data = snake_keys(request.get_json(silent=True))
    expense = expense_service.create_expense(project, current_user, data)
    return jsonify({"data": expense.to_dict()}), 201


@projects_bp.route("/projects/<int:project_id>/expenses/<int:expense_id>", methods=["PATCH", "PUT"])
@login_required
def update_expense(project_id: int, expense_id: int):
    project = load_project(project_id)
    expense = expense_service.get_expense(project, expense_id)
    data = snake_keys(request.get_json(silent=True))
    expense = expense_service.update_expense(expense, current_user, data)
    return jsonify({"data": expense.to_dict()})


@projects_bp.route("/projects/<int:project_id>/expenses/<int:expense_id>", methods=["DELETE"])
@login_required
def delete_expense(project_id: int, expense_id: int):
    project = load_project(project_id)
    expense = expense_service.get_expense(project, expense_id)
    expense_service.delete_expense(expense, current_user)
    return jsonify({"message": "Expense deleted successfully"})


# ---------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------
@projects_bp.route("/projects/<int:project_id>/budget", methods=["GET"])
@login_required
def project_budget(project_id: int):
    project = load_project(project_id)
    return jsonify({"data": project_service.project_budget(project)})


@projects_bp.route("/projects/<int:project_id>/budget", methods=["POST"])
@login_required
def add_budget_line(project_id: int):
    project = load_project(project_id)
    data = snake_keys(request.get_json(silent=True))
    item = project_service.add_budget_line(project, current_user, data)
    return jsonify({"data": project_service.budget_line_to_dict(item)}), 201


@projects_bp.route("/projects/<int:project_id>/budget/<int:item_id>", methods=["PATCH", "PUT"])
@login_required
def update_budget_line(project_id: int, item_id: int):
    project = load_project(project_id)
    item = project_service.get_budget_line(project, item_id)
    data = snake_keys(request.get_json(silent=True))
    item = project_service.update_budget_line(item, current_user, data)
    return jsonify({"data": project_service.budget_line_to_dict(item)})


@projects_bp.route("/projects/<int:project_id>/budget/<int:item_id>", methods=["DELETE"])
@login_required
def delete_budget_line(project_id: int, item_id: int):
    project = load_project(project_id)
    item = project_service.get_budget_line(project, item_id)
    project_service.delete_budget_line(item, current_user)
    return jsonify({"message": "Budget line item deleted successfully"})

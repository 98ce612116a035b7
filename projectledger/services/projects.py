"""
projectledger/services/projects.py

Projects and their budget line items.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..audit import log_action, serialize_model
from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import BudgetLineItem, Customer, Project, User
from ..utils import clean_str, parse_decimal
from . import unit_of_work
from .reconciliation import budget_with_actuals, project_actual_spend

logger = logging.getLogger(__name__)

PROJECT_STATUSES = ("active", "on-hold", "completed", "cancelled")


def list_projects(customer_id: int):
    return Project.query.filter_by(customer_id=customer_id).order_by(Project.created_at.desc(), Project.id.desc())


def _total_budget(value) -> Decimal:
    total_budget = parse_decimal(value)
    if total_budget is None:
        total_budget = Decimal("0.00")
    if not total_budget.is_finite() or total_budget < 0:
        raise ValidationError("totalBudget must be zero or more", {"field": "totalBudget"})
    return total_budget


def create_project(customer: Customer, actor: User, data: dict) -> Project:
    name = clean_str(data.get("name"))
    if not name:
        raise ValidationError("name is required", {"field": "name"})
    total_budget = _total_budget(data.get("total_budget"))

    with unit_of_work():
        project = Project(
            customer_id=customer.id,
            name=name,
            description=clean_str(data.get("description")),
            currency=(clean_str(data.get("currency")) or current_app.config["DEFAULT_CURRENCY"]).upper(),
            total_budget=total_budget,
        )
        db.session.add(project)
        db.session.flush()
        log_action(project, "CREATE", actor=actor, after=serialize_model(project))

    logger.info("Project %s created for customer %s", project.id, customer.id)
    return project


def update_project(project: Project, actor: User, data: dict) -> Project:
    """Edit name, description, status, currency or totalBudget. Actual spend is never writable."""
    if "actual_spend" in data:
        raise ValidationError("actualSpend is derived from paid expenses", {"field": "actualSpend"})

    changes = {}
    if "name" in data:
        changes["name"] = clean_str(data["name"])
        if not changes["name"]:
            raise ValidationError("name is required", {"field": "name"})
    if "description" in data:
        changes["description"] = clean_str(data["description"])
    if "status" in data:
        status = (clean_str(data["status"]) or "").lower().replace("_", "-")
        if status not in PROJECT_STATUSES:
            raise ValidationError("Invalid status", {"field": "status", "allowed": list(PROJECT_STATUSES)})
        changes["status"] = status
    if "currency" in data and clean_str(data["currency"]):
        changes["currency"] = clean_str(data["currency"]).upper()
    if "total_budget" in data:
        changes["total_budget"] = _total_budget(data["total_budget"])

    before = serialize_model(project)
    with unit_of_work():
        for name, value in changes.items():
            setattr(project, name, value)
        db.session.flush()
        log_action(project, "UPDATE", actor=actor, before=before, after=serialize_model(project))

    return project


def project_detail(project: Project) -> dict:
    """Project payload plus spend recomputed from expenses."""
    data = project.to_dict()
    data["reconciledSpend"] = float(project_actual_spend(project.id))
    return data


# ---------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------
def project_budget(project: Project) -> dict:
    lines = budget_with_actuals(project)
    planned = sum(line["plannedAmount"] for line in lines)
    return {
        "items": lines,
        "totals": {
            "planned": planned,
            "actual": float(project.actual_spend or 0),
            "totalBudget": float(project.total_budget or 0),
            "remaining": float(project.remaining_budget),
        },
    }


def get_budget_line(project: Project, item_id: int) -> BudgetLineItem:
    item = BudgetLineItem.query.filter_by(id=item_id, project_id=project.id).first()
    if item is None:
        raise NotFoundError("Budget line item not found")
    return item


def _ensure_unique_category(project_id: int, category: str, exclude_id: int | None = None) -> None:
    # Actuals are matched to budget lines case-insensitively.
    q = BudgetLineItem.query.filter(
        BudgetLineItem.project_id == project_id,
        func.lower(BudgetLineItem.category) == category.lower(),
    )
    if exclude_id is not None:
        q = q.filter(BudgetLineItem.id != exclude_id)
    if q.first() is not None:
        raise ValidationError("A budget line for this category already exists", {"field": "category"})


def _planned_amount(value) -> Decimal:
    planned = parse_decimal(value)
    if planned is None or not planned.is_finite() or planned < 0:
        raise ValidationError("plannedAmount must be zero or more", {"field": "plannedAmount"})
    return planned


def add_budget_line(project: Project, actor: User, data: dict) -> BudgetLineItem:
    category = clean_str(data.get("category"))
    if not category:
        raise ValidationError("category is required", {"field": "category"})
    planned = _planned_amount(data.get("planned_amount"))
    _ensure_unique_category(project.id, category)

    try:
        with unit_of_work():
            item = BudgetLineItem(
                project_id=project.id,
                category=category,
                description=clean_str(data.get("description")),
                planned_amount=planned,
                notes=clean_str(data.get("notes")),
            )
            db.session.add(item)
            db.session.flush()
            log_action(item, "CREATE", actor=actor, after=serialize_model(item))
    except IntegrityError:
        raise ValidationError("A budget line for this category already exists", {"field": "category"})

    return item


def update_budget_line(item: BudgetLineItem, actor: User, data: dict) -> BudgetLineItem:
    """
    Edit category, description, plannedAmount or notes.

    Actual amount and variance are always derived from paid expenses and
    cannot be set.
    """
    changes = {}
    if "category" in data:
        category = clean_str(data["category"])
        if not category:
            raise ValidationError("category is required", {"field": "category"})
        _ensure_unique_category(item.project_id, category, exclude_id=item.id)
        changes["category"] = category
    if "planned_amount" in data:
        changes["planned_amount"] = _planned_amount(data["planned_amount"])
    for name in ("description", "notes"):
        if name in data:
            changes[name] = clean_str(data[name])

    before = serialize_model(item)
    try:
        with unit_of_work():
            for name, value in changes.items():
                setattr(item, name, value)
            db.session.flush()
            log_action(item, "UPDATE", actor=actor, before=before, after=serialize_model(item))
    except IntegrityError:
        raise ValidationError("A budget line for this category already exists", {"field": "category"})

    return item


def delete_budget_line(item: BudgetLineItem, actor: User) -> None:
    with unit_of_work():
        log_action(item, "DELETE", actor=actor, before=serialize_model(item))
        db.session.delete(item)


def budget_line_to_dict(item: BudgetLineItem) -> dict:
    return {
        "id": item.id,
        "projectId": item.project_id,
        "category": item.category,
        "description": item.description,
        "plannedAmount": float(item.planned_amount),
        "notes": item.notes,
    }

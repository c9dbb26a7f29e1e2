# Overview: Flask API routes for audit logs, audit items, checklists, scorecards and reports.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import audit_service
from ..services.audit_log_service import list_audit_logs
from ..services.concurrency import run_in_transaction
from ..time_utils import parse_iso_date, parse_iso_datetime
from ..validation import ValidationError
from .errors import DOMAIN_ERRORS, error_response, json_body, unexpected_error


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")

DEFAULT_LOG_LIMIT = 100


def _datetime_arg(source: dict, name: str):
    value = source.get(name)
    if not value:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime")


@audit_bp.get("/logs")
@require_auth
@require_permission("VIEW_AUDIT_LOGS")
def list_logs_route():
    """Query params: date_from, date_to, action_type, actor_user_id, branch_id, limit"""
    try:
        logs = list_audit_logs(
            date_from=_datetime_arg(request.args, "date_from"),
            date_to=_datetime_arg(request.args, "date_to"),
            action_type=request.args.get("action_type") or None,
            actor_user_id=request.args.get("actor_user_id", type=int),
            branch_id=request.args.get("branch_id", type=int),
            limit=request.args.get("limit", DEFAULT_LOG_LIMIT, type=int),
        )
        return jsonify({"logs": [log.to_dict() for log in logs]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list audit logs")


@audit_bp.get("/items")
@require_auth
@require_permission("VIEW_AUDIT_LOGS")
def list_items_route():
    """Query params: category, status, risk_level, branch_id, due_date (items due on or before)"""
    try:
        due = request.args.get("due_date")
        try:
            due_by = parse_iso_date(due) if due else None
        except ValueError:
            raise ValidationError("due_date must be an ISO-8601 date")

        items = audit_service.list_audit_items(
            category=request.args.get("category") or None,
            status=request.args.get("status") or None,
            risk_level=request.args.get("risk_level") or None,
            branch_id=request.args.get("branch_id", type=int),
            due_by=due_by,
        )
        return jsonify({"items": [item.to_dict() for item in items]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list audit items")


@audit_bp.post("/items")
@require_auth
@require_permission("MANAGE_AUDIT_ITEMS")
def create_item_route():
    """
    Request body:
    {
        "category": str, "subcategory": str, "title": str, "description": str,
        "risk_level": str, "due_date": "YYYY-MM-DD",
        "target_entity": str, "target_entity_id": str, "branch_id": int (optional)
    }
    """
    try:
        item = run_in_transaction(
            lambda: audit_service.create_audit_item(json_body(), actor_user_id=g.current_user.id)
        )
        return jsonify({"item": item.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create audit item")


@audit_bp.patch("/items/<int:item_id>")
@require_auth
@require_permission("MANAGE_AUDIT_ITEMS")
def update_item_route(item_id: int):
    """Editable: status, findings, recommendations, score, evidence."""
    try:
        item = run_in_transaction(
            lambda: audit_service.update_audit_item(item_id, json_body(), actor_user_id=g.current_user.id)
        )
        return jsonify({"item": item.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update audit item")


@audit_bp.get("/checklists")
@require_auth
@require_permission("VIEW_AUDIT_LOGS")
def list_checklists_route():
    try:
        return jsonify({"checklists": audit_service.list_checklists()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list audit checklists")


@audit_bp.get("/scorecard")
@require_auth
@require_permission("GENERATE_AUDIT_REPORTS")
def scorecard_route():
    """Query params: period (default "current"). Each call stores a snapshot for trend tracking."""
    try:
        scorecard = run_in_transaction(lambda: audit_service.generate_audit_scorecard(
            request.args.get("period", "current"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify(scorecard), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to generate audit scorecard")


@audit_bp.post("/reports")
@require_auth
@require_permission("GENERATE_AUDIT_REPORTS")
def generate_report_route():
    """
    Request body:
    {
        "type": "compliance" | "security" | "performance" | "user_activity",
        "date_from": ISO-8601, "date_to": ISO-8601, "branch_id": int
    }
    """
    try:
        data = json_body()
        branch_id = data.get("branch_id")
        if branch_id is not None and (isinstance(branch_id, bool) or not isinstance(branch_id, int)):
            raise ValidationError("branch_id must be an integer")

        report = run_in_transaction(lambda: audit_service.generate_audit_report(
            data.get("type"),
            date_from=_datetime_arg(data, "date_from"),
            date_to=_datetime_arg(data, "date_to"),
            branch_id=branch_id,
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"report": report}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to generate audit report")

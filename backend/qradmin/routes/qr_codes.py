# Overview: Flask API routes for the QR code lifecycle; parses input and returns JSON responses.

"""
QR code API routes.

Every mutation goes through qr_service, which enforces the lifecycle table
and writes the audit log; the route commits or rolls back.

Branch-scoped users can only act on QR codes in their own branch. Sales users
additionally cannot act on QR codes assigned to another seller.
"""

from flask import Blueprint, Response, g, jsonify, request

from ..decorators import check_branch_access, require_auth, require_permission, scoped_branch_id
from ..services import qr_service
from ..services.concurrency import run_in_transaction
from ..services.permission_service import PermissionDeniedError, is_branch_scoped
from .errors import DOMAIN_ERRORS, error_response, json_body, unexpected_error


qr_codes_bp = Blueprint("qr_codes", __name__, url_prefix="/api/qr-codes")


def _load_scoped_qr(qr_id: int):
    qr = qr_service.get_qr(qr_id)
    user = g.current_user
    if is_branch_scoped(user):
        check_branch_access(qr.allocated_branch_id)
        if user.role == "SALES_USER" and qr.allocated_to_user_id not in (None, user.id):
            raise PermissionDeniedError("QR code is assigned to another sales user")
    return qr


@qr_codes_bp.get("")
@require_auth
@require_permission("VIEW_QR_CODES")
def list_qr_codes_route():
    """
    Query params: status, branch_id, assigned_user_id.

    Branch-scoped users get their own branch; sales users only their own QRs.
    """
    try:
        user = g.current_user
        branch_id = scoped_branch_id(request.args.get("branch_id", type=int))
        assigned_user_id = request.args.get("assigned_user_id", type=int)
        if user.role == "SALES_USER":
            assigned_user_id = user.id

        qrs = qr_service.list_qr_codes(
            status=request.args.get("status") or None,
            branch_id=branch_id,
            assigned_user_id=assigned_user_id,
        )
        return jsonify({"qr_codes": [qr.to_dict() for qr in qrs], "total": len(qrs)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list QR codes")


@qr_codes_bp.post("/generate")
@require_auth
@require_permission("GENERATE_QR_CODES")
def generate_route():
    """
    Request body:
    {
        "count": int, "qr_type": "static" | "dynamic", "bank_name": str,
        "merchant_name": str, "merchant_code": str, "terminal_id": str
    }
    """
    try:
        data = json_body()
        qrs = run_in_transaction(lambda: qr_service.generate_qr_codes(
            count=data.get("count"),
            qr_type=data.get("qr_type", "static"),
            bank_name=data.get("bank_name"),
            merchant_name=data.get("merchant_name"),
            merchant_code=data.get("merchant_code"),
            terminal_id=data.get("terminal_id"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"count": len(qrs), "qr_codes": [qr.to_dict() for qr in qrs]}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to generate QR codes")


@qr_codes_bp.post("/upload")
@require_auth
@require_permission("GENERATE_QR_CODES")
def upload_route():
    """Multipart CSV upload under the "file" field."""
    if "file" not in request.files:
        return jsonify({"error": "file is required"}), 400

    file = request.files["file"]
    filename = file.filename or ""
    if not filename.lower().endswith(".csv"):
        return jsonify({"error": "Only CSV files are supported"}), 400

    try:
        content = file.stream.read().decode("utf-8-sig")
    except UnicodeDecodeError:
        return jsonify({"error": "File must be UTF-8 encoded"}), 400

    try:
        qrs = run_in_transaction(lambda: qr_service.upload_qr_codes(
            content=content,
            filename=filename,
            actor_user_id=g.current_user.id,
        ))
        return jsonify({
            "count": len(qrs),
            "upload_file_id": qrs[0].upload_file_id,
            "qr_codes": [qr.to_dict() for qr in qrs],
        }), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to upload QR codes")


@qr_codes_bp.post("/allocate")
@require_auth
@require_permission("ALLOCATE_QR_CODES")
def allocate_route():
    """Request body: {"qr_ids": [int], "branch_id": int}"""
    try:
        data = json_body()
        qrs = run_in_transaction(lambda: qr_service.allocate_qrs_to_branch(
            qr_ids=data.get("qr_ids"),
            branch_id=data.get("branch_id"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"count": len(qrs), "qr_codes": [qr.to_dict() for qr in qrs]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to allocate QR codes")


@qr_codes_bp.post("/bulk-allocate")
@require_auth
@require_permission("ALLOCATE_QR_CODES")
def bulk_allocate_route():
    """Request body: {"branch_id": int, "count": int}"""
    try:
        data = json_body()
        qrs = run_in_transaction(lambda: qr_service.bulk_allocate_qrs(
            branch_id=data.get("branch_id"),
            count=data.get("count"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"count": len(qrs), "qr_ids": [qr.id for qr in qrs]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to bulk allocate QR codes")


@qr_codes_bp.post("/bulk-assign")
@require_auth
@require_permission("ALLOCATE_QR_CODES")
def bulk_assign_route():
    """Request body: {"source_branch_id": int, "target_branch_id": int, "count": int}"""
    try:
        data = json_body()
        qrs = run_in_transaction(lambda: qr_service.bulk_assign_qrs(
            source_branch_id=data.get("source_branch_id"),
            target_branch_id=data.get("target_branch_id"),
            count=data.get("count"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"count": len(qrs), "qr_ids": [qr.id for qr in qrs]}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to bulk assign QR codes")


@qr_codes_bp.post("/sync")
@require_auth
@require_permission("MANAGE_QR_CODES")
def sync_route():
    try:
        summary = run_in_transaction(
            lambda: qr_service.sync_qr_assignments(actor_user_id=g.current_user.id)
        )
        return jsonify(summary), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to sync QR assignments")


@qr_codes_bp.get("/export/<kind>")
@require_auth
@require_permission("EXPORT_DATA")
def export_route(kind: str):
    """CSV download: qr_codes, allocations or issuances."""
    try:
        branch_id = scoped_branch_id(request.args.get("branch_id", type=int))
        content = qr_service.export_csv(kind, branch_id=branch_id)
        return Response(
            content,
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={kind}_export.csv"},
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to export data")


@qr_codes_bp.patch("/<int:qr_id>")
@require_auth
@require_permission("MANAGE_QR_CODES")
def update_qr_route(qr_id: int):
    """Editable: merchant_code, terminal_id, notes."""
    try:
        payload = json_body()
        qr = run_in_transaction(lambda: qr_service.update_qr_code(
            qr_id=qr_id, payload=payload, actor_user_id=g.current_user.id
        ))
        return jsonify({"qr_code": qr.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update QR code")


@qr_codes_bp.post("/<int:qr_id>/assign")
@require_auth
@require_permission("ASSIGN_QR_CODES")
def assign_route(qr_id: int):
    """Request body: {"user_id": int}"""
    try:
        _load_scoped_qr(qr_id)
        qr = run_in_transaction(lambda: qr_service.assign_qr_to_user(
            qr_id=qr_id,
            user_id=json_body().get("user_id"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"qr_code": qr.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to assign QR code")


@qr_codes_bp.post("/<int:qr_id>/issue")
@require_auth
@require_permission("ISSUE_QR_CODES")
def issue_route(qr_id: int):
    """Request body: {"merchant_id": int, "issuance_document": str (optional)}"""
    try:
        _load_scoped_qr(qr_id)
        data = json_body()
        qr = run_in_transaction(lambda: qr_service.issue_qr_to_merchant(
            qr_id=qr_id,
            merchant_id=data.get("merchant_id"),
            issuance_document=data.get("issuance_document"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"qr_code": qr.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to issue QR code")


@qr_codes_bp.post("/<int:qr_id>/return")
@require_auth
@require_permission("RETURN_QR_CODES")
def return_route(qr_id: int):
    """Request body: {"reason": str, "condition": str}"""
    try:
        _load_scoped_qr(qr_id)
        data = json_body()
        record = run_in_transaction(lambda: qr_service.return_qr(
            qr_id=qr_id,
            reason=data.get("reason"),
            condition=data.get("condition"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({
            "qr_code": qr_service.get_qr(qr_id).to_dict(),
            "return_record": record.to_dict(),
        }), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to return QR code")


@qr_codes_bp.post("/<int:qr_id>/block")
@require_auth
@require_permission("BLOCK_QR_CODES")
def block_route(qr_id: int):
    """Request body: {"reason": str}"""
    try:
        _load_scoped_qr(qr_id)
        qr = run_in_transaction(lambda: qr_service.block_qr_code(
            qr_id=qr_id,
            reason=json_body().get("reason"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"qr_code": qr.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to block QR code")


@qr_codes_bp.post("/<int:qr_id>/status")
@require_auth
@require_permission("MANAGE_QR_CODES")
def status_route(qr_id: int):
    """Request body: {"status": str, "reason": str}"""
    try:
        data = json_body()
        qr = run_in_transaction(lambda: qr_service.update_qr_status(
            qr_id=qr_id,
            status=data.get("status"),
            reason=data.get("reason"),
            actor_user_id=g.current_user.id,
        ))
        return jsonify({"qr_code": qr.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update QR status")


@qr_codes_bp.get("/<int:qr_id>/image.png")
@require_auth
@require_permission("VIEW_QR_CODES")
def qr_image_route(qr_id: int):
    try:
        _load_scoped_qr(qr_id)
        return Response(qr_service.render_qr_png(qr_id), mimetype="image/png")
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to render QR code")

# Overview: Maps service-layer exceptions to JSON error responses.

from flask import current_app, jsonify, request

from ..extensions import db
from ..services.campaign_service import CampaignError
from ..services.kyc_service import KYCError
from ..services.permission_service import PermissionDeniedError
from ..services.qr_service import QRLifecycleError
from ..services.request_service import RequestWorkflowError
from ..validation import ConflictError, NotFoundError, ValidationError


# Order matters: subclasses before their bases.
_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (ConflictError, 409),
    (ValidationError, 400),
    (QRLifecycleError, 400),
    (RequestWorkflowError, 400),
    (KYCError, 400),
    (CampaignError, 400),
    (PermissionDeniedError, 403),
)

DOMAIN_ERRORS = tuple(cls for cls, _ in _STATUS_BY_ERROR)


def error_response(exc: Exception):
    """Roll back and turn a domain exception into (json, status)."""
    db.session.rollback()
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return jsonify({"error": str(exc)}), status
    return jsonify({"error": str(exc)}), 400


def unexpected_error(message: str):
    """Roll back and log the active exception with its traceback."""
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data

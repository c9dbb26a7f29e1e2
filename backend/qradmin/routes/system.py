# Overview: Health endpoint covering the database, sessions and the admin bootstrap.

import time

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Branch, QRCode, SessionToken, User
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def _elapsed_ms(start: float) -> float:
    return round((time.time() - start) * 1000, 2)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "branches": db.session.query(Branch).count(),
            "users": db.session.query(User).count(),
            "qr_codes": db.session.query(QRCode).count(),
        }
        return {"status": "healthy", "latency_ms": _elapsed_ms(start_time), "details": details}
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start_time), "error": "Database error"}


def check_session_service_health() -> dict:
    """Active sessions, and expired ones that were never revoked."""
    start_time = time.time()
    try:
        active = db.session.query(SessionToken).filter_by(is_revoked=False).count()
        expired = db.session.query(SessionToken).filter(
            SessionToken.expires_at < utcnow(),
            SessionToken.is_revoked.is_(False),
        ).count()
        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": {"active_sessions": active, "expired_pending_cleanup": expired},
        }
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Session service health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start_time), "error": "Session service error"}


def check_admin_bootstrap() -> dict:
    """Degraded until at least one active SUPER_ADMIN exists."""
    start_time = time.time()
    try:
        admins = db.session.query(User).filter(
            User.role == "SUPER_ADMIN",
            User.is_active.is_(True),
        ).count()
        if not admins:
            return {
                "status": "degraded",
                "latency_ms": _elapsed_ms(start_time),
                "warning": "No active SUPER_ADMIN. Run: flask system init",
            }
        return {"status": "healthy", "latency_ms": _elapsed_ms(start_time), "details": {"super_admins": admins}}
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Admin bootstrap check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start_time), "error": "Auth service error"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "session_service": check_session_service_health(),
        "auth_service": check_admin_bootstrap(),
    }

    statuses = [c["status"] for c in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": _elapsed_ms(start_time),
        "checks": checks,
    }, http_status

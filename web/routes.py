"""
Download link routes.
"""
import logging

from flask import Blueprint, current_app, jsonify, redirect, request

from links.errors import TokenExhausted, TokenNotFound, UpstreamUnavailable, ValidationError

logger = logging.getLogger(__name__)

bp = Blueprint("links", __name__)


def _services():
    return current_app.extensions["dlgate"]


@bp.post("/links")
def create_link():
    """Mint a download link. Internal use: call after the payment has cleared."""
    manager = _services()["manager"]

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    key = payload.get("key") or request.form.get("key") or ""
    if not str(key).strip():
        return "Missing key", 400

    token = manager.create(str(key))
    return jsonify({
        "download_link": manager.build_link(token),
        "expires_in_minutes": manager.ttl_seconds // 60,
        "max_downloads": manager.max_downloads,
    })


@bp.get("/dl/<token>")
def download(token):
    """Spend one use of the link and redirect to a short-lived presigned URL."""
    result = _services()["coordinator"].retrieve(token)
    return redirect(result.url, code=302)


@bp.get("/health")
def health():
    manager = _services()["manager"]
    return {"ok": True, "redemption_mode": manager.mode.value}


@bp.app_errorhandler(ValidationError)
def handle_validation_error(e):
    return "Invalid token", 400


@bp.app_errorhandler(TokenNotFound)
def handle_not_found(e):
    return "Link expired or invalid", 404


@bp.app_errorhandler(TokenExhausted)
def handle_exhausted(e):
    return "Download limit reached", 410


@bp.app_errorhandler(UpstreamUnavailable)
def handle_upstream(e):
    logger.exception("Upstream failure on %s %s", request.method, request.path)
    return "Server error", 500

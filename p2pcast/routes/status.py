"""Read-only HTTP view of the signaling state."""
from flask import Blueprint, current_app, jsonify

status_bp = Blueprint("status", __name__)


@status_bp.get("/status")
def status():
    coordinator = current_app.extensions["p2pcast"]["coordinator"]
    return jsonify(coordinator.status())


@status_bp.get("/favicon.ico")
def favicon():
    return "", 204

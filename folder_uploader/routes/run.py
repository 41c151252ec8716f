"""Run control routes for folder_uploader"""

from flask import Blueprint, Response, jsonify

from folder_uploader.config import get_settings
from folder_uploader.errors import ConfigurationError
from folder_uploader.services.log_service import get_log_service
from folder_uploader.services.upload_manager import get_upload_manager

run_bp = Blueprint("run", __name__)


@run_bp.route("/start", methods=["POST"])
def start_run() -> tuple[Response, int]:
    """Start an upload run in the background.

    Returns:
        202 when the run was started, 400 for invalid settings, 409 if a run is active
    """
    settings = get_settings()
    try:
        settings.validate()
    except ConfigurationError as e:
        return jsonify({"error": str(e), "problems": e.problems}), 400

    manager = get_upload_manager()
    if not manager.start_run():
        return jsonify({"error": "An upload run is already in progress"}), 409

    get_log_service().info(
        "run",
        "run_requested",
        f"Upload run requested to {settings.destination_label}",
        {"destination": settings.destination_label},
    )
    return jsonify({"status": "started", "destination": settings.destination_label}), 202


@run_bp.route("/cancel", methods=["POST"])
def cancel_run() -> tuple[Response, int]:
    """Request cancellation of the active run.

    Returns:
        200 when cancellation was signalled, 404 if nothing is running
    """
    manager = get_upload_manager()
    if not manager.cancel_run():
        return jsonify({"error": "No upload run in progress"}), 404
    return jsonify({"status": "cancelling"}), 200


@run_bp.route("/last", methods=["GET"])
def last_run() -> tuple[Response, int]:
    """Get the summary or error of the most recent run in this process."""
    manager = get_upload_manager()
    return jsonify(
        {
            "is_running": manager.is_running(),
            "summary": manager.last_summary.to_dict() if manager.last_summary else None,
            "error": manager.last_error,
        }
    ), 200

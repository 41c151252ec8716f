"""Logs API routes for folder_uploader"""

from flask import Blueprint, Response, jsonify, request

from folder_uploader.services.log_service import LOG_CATEGORIES, get_log_service

logs_bp = Blueprint("logs", __name__)


@logs_bp.route("/entries", methods=["GET"])
def get_log_entries() -> tuple[Response, int]:
    """Query logged events with filtering and pagination.

    Query params:
        date: Filter by date (YYYY-MM-DD)
        level: Filter by level (INFO/WARNING/ERROR)
        category: Filter by category (app/run/discovery/upload/progress/settings)
        run_id: Only events of one upload run
        search: Text in the message, event name or uploaded file path
        offset: Pagination offset (default 0)
        limit: Pagination limit (default 100)

    Returns:
        JSON with entries, total, offset, limit; 400 for an unknown category
    """
    category = request.args.get("category")
    if category and category not in LOG_CATEGORIES:
        return jsonify(
            {"error": f"Unknown category: {category}", "categories": sorted(LOG_CATEGORIES)}
        ), 400

    try:
        offset = max(0, int(request.args.get("offset", "0")))
        limit = max(1, min(1000, int(request.args.get("limit", "100"))))
    except ValueError:
        offset = 0
        limit = 100

    result = get_log_service().read_log_entries(
        date=request.args.get("date"),
        level=request.args.get("level"),
        category=category,
        run_id=request.args.get("run_id"),
        search=request.args.get("search"),
        offset=offset,
        limit=limit,
    )

    return jsonify(result), 200


@logs_bp.route("/runs", methods=["GET"])
def get_run_summaries() -> tuple[Response, int]:
    """List per-run summary files."""
    return jsonify({"runs": get_log_service().list_run_summaries()}), 200

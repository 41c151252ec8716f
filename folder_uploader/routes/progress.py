"""Durable progress routes for folder_uploader"""

from flask import Blueprint, Response, jsonify, request

from folder_uploader.config import get_settings
from folder_uploader.errors import PersistenceError
from folder_uploader.services.progress_store import ProgressStore

progress_bp = Blueprint("progress", __name__)


@progress_bp.route("/failed", methods=["GET"])
def get_failed_files() -> tuple[Response, int]:
    """List durably recorded upload failures, newest first.

    Query params:
        offset: Pagination offset (default 0)
        limit: Pagination limit (default 100)
    """
    try:
        offset = max(0, int(request.args.get("offset", "0")))
        limit = max(1, min(1000, int(request.args.get("limit", "100"))))
    except ValueError:
        offset = 0
        limit = 100

    store = ProgressStore(get_settings().progress_database)
    try:
        entries = store.failed_entries(limit=limit, offset=offset)
    except PersistenceError as e:
        return jsonify({"error": str(e)}), 500
    finally:
        store.close()

    return jsonify(
        {
            "entries": [e.to_dict() for e in entries],
            "offset": offset,
            "limit": limit,
        }
    ), 200


@progress_bp.route("/summary", methods=["GET"])
def get_progress_summary() -> tuple[Response, int]:
    """Get completed/failed counts and session timestamps from the progress database."""
    store = ProgressStore(get_settings().progress_database)
    try:
        stats = store.get_stats()
    except PersistenceError as e:
        return jsonify({"error": str(e)}), 500
    finally:
        store.close()

    return jsonify(stats), 200

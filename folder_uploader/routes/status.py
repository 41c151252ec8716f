"""Live run status routes for folder_uploader"""

import json
import threading
from collections.abc import Generator

from flask import Blueprint, Response, jsonify

from folder_uploader.services.upload_manager import get_upload_manager
from folder_uploader.services.upload_state import get_upload_state

status_bp = Blueprint("status", __name__)

# Seconds between keep-alive comments when nothing changes
KEEPALIVE_SECONDS = 15.0


@status_bp.route("", methods=["GET"])
def get_status() -> tuple[Response, int]:
    """Get a snapshot of the current run.

    Returns:
        JSON with counters, current file, per-folder progress and whether a run is active
    """
    snapshot = get_upload_state().current_state().to_dict()
    snapshot["is_running"] = get_upload_manager().is_running()
    return jsonify(snapshot), 200


@status_bp.route("/stream", methods=["GET"])
def stream_status() -> Response:
    """Stream run snapshots via Server-Sent Events.

    One event is sent immediately, then one per batch of state changes.
    The stream ends after the snapshot that reports the run as completed.
    """
    state = get_upload_state()

    def generate() -> Generator[str, None, None]:
        changed = threading.Event()
        unsubscribe = state.subscribe(changed.set)
        try:
            while True:
                changed.clear()
                snapshot = state.current_state()
                yield f"data: {json.dumps(snapshot.to_dict())}\n\n"
                if snapshot.is_completed:
                    return

                # Coalesce bursts of notifications into one event
                while not changed.wait(KEEPALIVE_SECONDS):
                    yield ": keep-alive\n\n"
        finally:
            unsubscribe()

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )

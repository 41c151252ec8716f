"""Settings API routes for folder_uploader"""

from flask import Blueprint, Response, jsonify, request

from folder_uploader.config import check_setting_types, get_package_version, get_settings
from folder_uploader.errors import ConfigurationError
from folder_uploader.services import s3_service
from folder_uploader.services.log_service import get_log_service

settings_bp = Blueprint("settings", __name__)

ALLOWED_KEYS = frozenset(
    {
        "aws_profile",
        "aws_region",
        "s3_bucket",
        "blob_prefix",
        "source_folders",
        "scan_recursively",
        "include_extensions",
        "exclude_extensions",
        "exclude_file_names",
        "delay_between_files_ms",
        "max_retries",
        "pre_enumerate",
        "log_directory",
    }
)


@settings_bp.route("", methods=["GET"])
def get_all_settings() -> tuple[Response, int]:
    """Get all current settings.

    Returns:
        JSON response with all settings
    """
    settings = get_settings()
    return jsonify(settings.all()), 200


@settings_bp.route("", methods=["PUT"])
def update_settings() -> tuple[Response, int]:
    """Update settings.

    Request body:
        JSON object with settings to update; unknown keys are ignored

    Returns:
        JSON response with updated settings, or 400 listing mistyped values
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    data = request.get_json()
    if not data or not isinstance(data, dict):
        return jsonify({"error": "Body must be a non-empty JSON object"}), 400

    filtered_data = {k: v for k, v in data.items() if k in ALLOWED_KEYS}

    if not filtered_data:
        return jsonify({"error": "No valid settings provided"}), 400

    problems = check_setting_types(filtered_data)
    if problems:
        return jsonify({"error": "Invalid setting values", "problems": problems}), 400

    settings = get_settings()
    settings.update(filtered_data)

    log = get_log_service()
    log.info(
        "settings",
        "settings_updated",
        f"Updated settings: {', '.join(filtered_data.keys())}",
        {"changed_keys": list(filtered_data.keys())},
    )

    return jsonify(settings.all()), 200


@settings_bp.route("/validate", methods=["POST"])
def validate_settings() -> tuple[Response, int]:
    """Check the current settings, optionally including bucket access.

    Request body (optional):
        check_bucket: Also call HeadBucket with the configured profile (default: false)
    """
    settings = get_settings()
    try:
        settings.validate()
    except ConfigurationError as e:
        return jsonify({"success": False, "problems": e.problems}), 200

    data = request.get_json(silent=True) or {}
    if not data.get("check_bucket"):
        return jsonify({"success": True, "problems": []}), 200

    try:
        client = s3_service.create_s3_client(settings.aws_profile, settings.aws_region)
        result = s3_service.validate_bucket_access(client, settings.s3_bucket)
    except Exception as e:
        return jsonify({"success": False, "problems": [str(e)]}), 200

    problems = [] if result["success"] else [result["error"]]
    return jsonify({"success": result["success"], "problems": problems}), 200


@settings_bp.route("/profiles", methods=["GET"])
def get_profiles() -> tuple[Response, int]:
    """Get list of available AWS profiles."""
    return jsonify({"profiles": s3_service.get_available_profiles()}), 200


@settings_bp.route("/version", methods=["GET"])
def get_version() -> tuple[Response, int]:
    """Get the application version."""
    return jsonify({"version": get_package_version()}), 200

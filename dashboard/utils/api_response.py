"""Standardized API response helpers for the monitoring dashboard.

All JSON API endpoints return responses in one envelope format:

    Success: {"success": true, "data": ..., "message": ...}
    Error:   {"success": false, "error": ...}

Usage:
    from dashboard.utils.api_response import api_success, api_error, api_exception

    @bp.route("/api/kpis")
    def api_kpis():
        try:
            return api_success(data=service.kpis().to_dict())
        except MonitoringError as e:
            return api_exception(e)
"""

import logging

from flask import jsonify

from common.ams_monitoring.exceptions import (
    CourseNotFoundError,
    PatientNotFoundError,
    PersistenceError,
    PreconditionError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def api_success(data=None, message=None):
    """Return a standardized success response.

    Returns: {"success": true, "data": ..., "message": ...}
    """
    response = {"success": True}
    if data is not None:
        response["data"] = data
    if message is not None:
        response["message"] = message
    return jsonify(response)


def api_error(error, status_code=400):
    """Return a standardized error response.

    Returns: {"success": false, "error": ...}
    """
    return jsonify({"success": False, "error": str(error)}), status_code


def status_code_for(error):
    """HTTP status for a monitoring error."""
    # Not-found errors subclass ValidationError, so they are checked first
    if isinstance(error, (PatientNotFoundError, CourseNotFoundError)):
        return 404
    if isinstance(error, (ValidationError, PreconditionError)):
        return 400
    if isinstance(error, PersistenceError):
        return 503
    return 500


def api_exception(error):
    """Return the error envelope for an exception raised by the service."""
    status_code = status_code_for(error)
    if status_code >= 500:
        logger.error(f"Monitoring API error: {error}")
    return api_error(error, status_code)

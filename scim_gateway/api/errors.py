"""Error handlers for the application."""
import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from scim_gateway.core.scim_service import ScimError

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    """Register JSON error handlers with the Flask app.

    SCIM paths get RFC 7644 error bodies, everything else a small
    ``{"error", "message"}`` object.
    """

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        if _is_scim_request():
            return jsonify(ScimError(error.code, error.description).to_dict()), error.code
        return jsonify({"error": error.name, "message": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        if isinstance(error, HTTPException):
            return handle_http_exception(error)

        logger.error("Unhandled exception on %s: %s", request.path, error, exc_info=True)
        if _is_scim_request():
            return jsonify(ScimError(500, "An unexpected error occurred").to_dict()), 500
        return jsonify({"error": "Internal Server Error", "message": "An unexpected error occurred"}), 500


def _is_scim_request() -> bool:
    return request.path.startswith("/scim/v2")

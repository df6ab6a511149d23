import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class APIError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SignalingError(Exception):
    """Base for failures handled inside the signaling path; never sent to clients."""


class RoutingError(SignalingError):
    """A relay target could not be resolved to a live connection."""


class EvictionRace(SignalingError):
    """A release arrived for an id that no longer holds the broadcaster slot."""


class BridgeError(Exception):
    pass


class BridgeSpawnFailure(BridgeError):
    pass


class BridgeWriteFailure(BridgeError):
    pass


def register_error_handlers(app):
    @app.errorhandler(APIError)
    def handle_api_error(err):
        response = jsonify({"error": err.message})
        response.status_code = err.status_code
        return response

    @app.errorhandler(404)
    def handle_404(err):
        logger.info("404: %s %s", request.method, request.path)
        response = jsonify({"error": "Endpoint not found", "path": request.path})
        response.status_code = 404
        return response

    @app.errorhandler(Exception)
    def handle_exception(err):
        if isinstance(err, HTTPException):
            response = jsonify({"error": err.description})
            response.status_code = err.code
            return response
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        response = jsonify({"error": "Internal server error"})
        response.status_code = 500
        return response

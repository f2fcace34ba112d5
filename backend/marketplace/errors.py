"""Error taxonomy shared by every route handler.

Handlers raise one of these and the handlers registered in
``register_error_handlers`` turn it into ``{"success": false, "message": ...}``.
"""

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    status_code = 500
    default_message = "Something went wrong. Please try again."

    def __init__(self, message=None, status_code=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ApiError):
    status_code = 400
    default_message = "The request is missing required information."


class AlreadyExists(ApiError):
    status_code = 400
    default_message = "An account with this email already exists."


class AlreadyActivated(ApiError):
    status_code = 400
    default_message = "Account is already activated."


class NotActivated(ApiError):
    status_code = 400
    default_message = "Account is not activated."


class InvalidCredentials(ApiError):
    status_code = 400
    default_message = "Invalid credentials."


class InvalidToken(ApiError):
    status_code = 400
    default_message = "Invalid or expired token."


class TokenExpired(InvalidToken):
    default_message = "This link has expired. Please request a new one."


class NotFound(ApiError):
    status_code = 404
    default_message = "Resource not found."


class Unauthenticated(ApiError):
    status_code = 401
    default_message = "Please login to continue."


class Forbidden(ApiError):
    status_code = 403
    default_message = "You need additional permissions to perform this action."


class UpstreamFailure(ApiError):
    status_code = 500
    default_message = "An external service failed. Please try again in a moment."


def error_response(message: str, status_code: int):
    return jsonify({"success": False, "message": message}), status_code


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def handle_api_error(error: ApiError):
        if error.status_code >= 500:
            app.logger.error("%s: %s", type(error).__name__, error.message)
        return error_response(error.message, error.status_code)

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return error_response(error.description or error.name, error.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.exception("Unhandled error while serving request")
        return error_response(str(error) or ApiError.default_message, 500)

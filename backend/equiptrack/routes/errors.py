# Overview: Maps service exceptions to JSON error responses.

from flask import current_app, jsonify

from ..extensions import db
from ..validation import ConflictError, NotFoundError, StoreError, ValidationError


def error_response(exc: Exception):
    """
    Roll back the request's session and render `exc` as a JSON error.

    400 ValidationError (with its code), 404 NotFoundError, 409 ConflictError,
    503 StoreError, 500 anything else.
    """
    db.session.rollback()

    if isinstance(exc, ValidationError):
        body = {"error": str(exc)}
        if exc.code:
            body["code"] = exc.code
        return jsonify(body), 400
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    if isinstance(exc, StoreError):
        current_app.logger.error("Event store failure: %s", exc)
        return jsonify({"error": "Event store unavailable"}), 503

    current_app.logger.exception("Unexpected error")
    return jsonify({"error": "Unexpected error"}), 500

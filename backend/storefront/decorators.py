# Overview: Route decorators that translate catalog exceptions into JSON error responses.

from functools import wraps
from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException

from .services.media_service import StorageFailure
from .validation import ConflictError, NotFoundError, ValidationError


def _error_body(message: str, field: str | None = None, details: dict | None = None) -> dict:
    body = {"error": message}
    if field:
        body["field"] = field
    if details:
        body["details"] = details
    return body


def catalog_errors(f):
    """
    Map service exceptions to HTTP responses.

    - ValidationError (incl. EmptySelection) -> 400 with the offending field
    - ConflictError (DuplicateSlug, DuplicateSku, ValueInUse,
      DuplicateCombination) -> 409
    - NotFoundError -> 404
    - StorageFailure (incl. ReconciliationFailed) -> 500, generic message
    - anything else -> logged, 500

    HTTPExceptions raised by Flask/Werkzeug (abort, 413) pass through.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except HTTPException:
            raise
        except ValidationError as e:
            return jsonify(_error_body(str(e), e.field)), 400
        except ConflictError as e:
            return jsonify(_error_body(str(e), e.field, e.details)), 409
        except NotFoundError as e:
            return jsonify(_error_body(str(e))), 404
        except StorageFailure as e:
            # Already logged where the write failed
            return jsonify(_error_body(str(e))), 500
        except Exception:
            current_app.logger.exception("Unhandled error in %s", f.__name__)
            return jsonify(_error_body("Internal server error")), 500

    return decorated_function

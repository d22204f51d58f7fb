from functools import wraps

from firebase_functions import https_fn, logger

Code = https_fn.FunctionsErrorCode

# canonical HTTP status for each callable error code, used by the REST layer
HTTP_STATUS = {
    Code.INVALID_ARGUMENT: 400,
    Code.FAILED_PRECONDITION: 400,
    Code.OUT_OF_RANGE: 400,
    Code.UNAUTHENTICATED: 401,
    Code.PERMISSION_DENIED: 403,
    Code.NOT_FOUND: 404,
    Code.ALREADY_EXISTS: 409,
    Code.ABORTED: 409,
    Code.RESOURCE_EXHAUSTED: 429,
    Code.CANCELLED: 499,
    Code.UNIMPLEMENTED: 501,
    Code.UNAVAILABLE: 503,
    Code.DEADLINE_EXCEEDED: 504,
}


def unauthenticated(message: str) -> https_fn.HttpsError:
    return https_fn.HttpsError(Code.UNAUTHENTICATED, message)


def invalid_argument(message: str) -> https_fn.HttpsError:
    return https_fn.HttpsError(Code.INVALID_ARGUMENT, message)


def not_found(message: str) -> https_fn.HttpsError:
    return https_fn.HttpsError(Code.NOT_FOUND, message)


def permission_denied(message: str) -> https_fn.HttpsError:
    return https_fn.HttpsError(Code.PERMISSION_DENIED, message)


def already_exists(message: str) -> https_fn.HttpsError:
    return https_fn.HttpsError(Code.ALREADY_EXISTS, message)


def failed_precondition(message: str) -> https_fn.HttpsError:
    return https_fn.HttpsError(Code.FAILED_PRECONDITION, message)


def internal(message: str = "An unexpected error occurred.") -> https_fn.HttpsError:
    return https_fn.HttpsError(Code.INTERNAL, message)


def code_name(error: https_fn.HttpsError) -> str:
    return getattr(error.code, "value", str(error.code))


def http_status(error: https_fn.HttpsError) -> int:
    return HTTP_STATUS.get(error.code, 500)


def guard(name: str):
    """Entry-point wrapper.

    HttpsError passes through untouched; anything else is logged and reported
    to the caller as INTERNAL so store internals never leak into responses.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except https_fn.HttpsError as e:
                logger.warn(f"[{name}] rejected: {code_name(e)} {e.message}")
                raise
            except Exception as e:
                logger.error(f"[{name}] unexpected error: {e!r}")
                raise internal() from e

        return wrapper

    return decorator

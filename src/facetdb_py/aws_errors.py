from __future__ import annotations

from botocore.exceptions import ClientError

from .errors import AwsError, ConditionFailedError, FacetdbPyError, NotFoundError, ValidationError

_MAPPED_CODES: dict[str, tuple[type[FacetdbPyError], str]] = {
    "ConditionalCheckFailedException": (ConditionFailedError, "the conditional request failed"),
    "ValidationException": (ValidationError, "validation failed"),
    "ResourceNotFoundException": (NotFoundError, "resource not found"),
}


def error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


def map_client_error(err: ClientError) -> Exception:
    """Translate a botocore ``ClientError`` into this package's exception types."""
    code = error_code(err)
    message = str(err.response.get("Error", {}).get("Message", ""))

    mapped = _MAPPED_CODES.get(code)
    if mapped is not None:
        error_type, fallback = mapped
        return error_type(message or fallback)
    return AwsError(code=code or "UnknownError", message=message or str(err))


def map_store_error(err: Exception) -> Exception:
    if isinstance(err, ClientError):
        return map_client_error(err)
    return err

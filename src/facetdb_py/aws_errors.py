from __future__ import annotations

from botocore.exceptions import ClientError

from .errors import (
    AwsError,
    ConditionFailedError,
    FacetdbPyError,
    NotFoundError,
    ServiceValidationError,
    UnknownError,
)


def map_client_error(err: ClientError) -> AwsError:
    code = str(err.response.get("Error", {}).get("Code", ""))
    message = str(err.response.get("Error", {}).get("Message", ""))

    if code == "ConditionalCheckFailedException":
        return ConditionFailedError(message)
    if code == "ValidationException":
        return ServiceValidationError(message)
    if code == "ResourceNotFoundException":
        return NotFoundError(message)

    return AwsError(message or str(err), aws_code=code or "UnknownError")


def map_execution_error(err: Exception) -> FacetdbPyError:
    if isinstance(err, ClientError):
        return map_client_error(err)
    return UnknownError(f"unexpected error while executing request: {err!r}")

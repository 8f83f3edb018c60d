from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from facetdb_py import (
    AwsError,
    ConditionFailedError,
    FacetdbPyError,
    IncompleteCompositeAttributesError,
    NotFoundError,
    ServiceValidationError,
    UnknownError,
)
from facetdb_py.aws_errors import map_client_error, map_execution_error


def _client_error(code: str, message: str = "") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, "PutItem")


@pytest.mark.parametrize(
    ("code", "error_type"),
    [
        ("ConditionalCheckFailedException", ConditionFailedError),
        ("ValidationException", ServiceValidationError),
        ("ResourceNotFoundException", NotFoundError),
    ],
)
def test_map_client_error_known_codes(code: str, error_type: type[AwsError]) -> None:
    err = map_client_error(_client_error(code, "details"))

    assert isinstance(err, error_type)
    assert err.aws_code == code
    assert err.message == "details"
    assert err.code == "aws_error"


def test_map_client_error_keeps_unknown_codes() -> None:
    err = map_client_error(_client_error("ThrottlingException", "slow down"))

    assert type(err) is AwsError
    assert err.aws_code == "ThrottlingException"
    assert str(err) == "ThrottlingException: slow down"


def test_map_execution_error_wraps_everything_else() -> None:
    assert isinstance(map_execution_error(_client_error("ValidationException")), ServiceValidationError)

    err = map_execution_error(TimeoutError("read timed out"))
    assert isinstance(err, UnknownError)
    assert err.code == "unknown_error"
    assert "read timed out" in err.message


def test_errors_share_a_base_and_carry_codes() -> None:
    err = IncompleteCompositeAttributesError(missing=("status",), access_patterns=("project",))

    assert isinstance(err, FacetdbPyError)
    assert err.code == "incomplete_composite_attributes"
    assert "status" in str(err)
    assert "project" in str(err)
    assert FacetdbPyError("x", code="custom").code == "custom"

from __future__ import annotations


class FacetdbPyError(Exception):
    default_code = "facetdb_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message


class ModelDefinitionError(FacetdbPyError, ValueError):
    default_code = "invalid_model"


class ValidationError(FacetdbPyError):
    default_code = "validation_error"


class InvalidOptionsError(FacetdbPyError):
    default_code = "invalid_options"


class InvalidAttributeError(FacetdbPyError):
    default_code = "invalid_attribute"


class IncompleteCompositeAttributesError(FacetdbPyError):
    default_code = "incomplete_composite_attributes"

    def __init__(self, *, missing: tuple[str, ...], access_patterns: tuple[str, ...]) -> None:
        super().__init__(
            "incomplete composite attributes: without "
            f"{', '.join(missing)} the following access patterns cannot be updated: "
            f"{', '.join(access_patterns)}"
        )
        self.missing = missing
        self.access_patterns = access_patterns


class MissingAttributeError(FacetdbPyError):
    default_code = "missing_attribute"


class InvalidIdentifierError(FacetdbPyError):
    default_code = "invalid_identifier"


class InvalidIndexError(FacetdbPyError):
    default_code = "invalid_index"


class InvalidCollectionError(FacetdbPyError):
    default_code = "invalid_collection"


class KeyOwnershipError(FacetdbPyError):
    default_code = "non_entity_key"


class AwsError(FacetdbPyError):
    default_code = "aws_error"

    def __init__(self, message: str, *, aws_code: str = "UnknownError") -> None:
        super().__init__(f"{aws_code}: {message}")
        self.aws_code = aws_code
        self.message = message


class ConditionFailedError(AwsError):
    def __init__(self, message: str) -> None:
        super().__init__(message, aws_code="ConditionalCheckFailedException")


class NotFoundError(AwsError):
    def __init__(self, message: str) -> None:
        super().__init__(message, aws_code="ResourceNotFoundException")


class ServiceValidationError(AwsError):
    def __init__(self, message: str) -> None:
        super().__init__(message, aws_code="ValidationException")


class UnknownError(FacetdbPyError):
    default_code = "unknown_error"

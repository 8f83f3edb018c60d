from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .attributes import Attribute, Schema
from .chain import Chain, QueryChain, SortKeyChain, UpdateChain, WriteChain
from .client import DocumentClient
from .cursor import CursorFormatter, DefaultCursorFormatter
from .entity import Entity
from .errors import (
    AwsError,
    ConditionFailedError,
    FacetdbPyError,
    IncompleteCompositeAttributesError,
    InvalidAttributeError,
    InvalidCollectionError,
    InvalidIdentifierError,
    InvalidIndexError,
    InvalidOptionsError,
    KeyOwnershipError,
    MissingAttributeError,
    ModelDefinitionError,
    NotFoundError,
    ServiceValidationError,
    UnknownError,
    ValidationError,
)
from .expressions import FilterCondition, FilterGroup
from .matcher import IndexMatch, find_best_index
from .model import EntityModel, IndexDefinition, KeyTemplate, normalize_model
from .options import ExecutionOptions, resolve_options
from .results import BatchGetResult, BatchWriteResult, ItemResult, QueryResult
from .service import Service

if TYPE_CHECKING:
    from .document import load_entity, parse_model_document
    from .runtime import create_boto3_config, create_dynamodb_client


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name in {"load_entity", "parse_model_document"}:
        from . import document

        return getattr(document, name)
    if name in {"create_boto3_config", "create_dynamodb_client"}:
        from . import runtime

        return getattr(runtime, name)
    raise AttributeError(name)


__all__ = [
    "Attribute",
    "AwsError",
    "BatchGetResult",
    "BatchWriteResult",
    "Chain",
    "ConditionFailedError",
    "create_boto3_config",
    "create_dynamodb_client",
    "CursorFormatter",
    "DefaultCursorFormatter",
    "DocumentClient",
    "Entity",
    "EntityModel",
    "ExecutionOptions",
    "FacetdbPyError",
    "FilterCondition",
    "FilterGroup",
    "find_best_index",
    "IncompleteCompositeAttributesError",
    "IndexDefinition",
    "IndexMatch",
    "InvalidAttributeError",
    "InvalidCollectionError",
    "InvalidIdentifierError",
    "InvalidIndexError",
    "InvalidOptionsError",
    "ItemResult",
    "KeyOwnershipError",
    "KeyTemplate",
    "load_entity",
    "MissingAttributeError",
    "ModelDefinitionError",
    "normalize_model",
    "NotFoundError",
    "parse_model_document",
    "QueryChain",
    "QueryResult",
    "resolve_options",
    "Schema",
    "Service",
    "ServiceValidationError",
    "SortKeyChain",
    "UnknownError",
    "UpdateChain",
    "ValidationError",
    "WriteChain",
    "__repo_version__",
    "__version__",
]

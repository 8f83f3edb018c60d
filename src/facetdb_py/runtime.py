from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any, cast

import boto3
from botocore.config import Config

DEFAULT_ENDPOINT_ENV = "DYNAMODB_ENDPOINT"


def create_boto3_config(
    *,
    connect_timeout: float = 1.0,
    read_timeout: float = 3.0,
    max_attempts: int = 3,
    retry_mode: str = "adaptive",
) -> Config:
    """Client configuration; retries are left to botocore's own retry handler."""
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": retry_mode},
    )


def resolve_endpoint(endpoint: str | None = None, environ: Mapping[str, str] = os.environ) -> str | None:
    return endpoint or environ.get(DEFAULT_ENDPOINT_ENV) or None


def create_dynamodb_client(
    *,
    region: str | None = None,
    endpoint: str | None = None,
    config: Config | None = None,
    session: Any | None = None,
    environ: Mapping[str, str] = os.environ,
) -> Any:
    sess = session or boto3.session.Session(region_name=region)
    kwargs: dict[str, Any] = {"config": config or create_boto3_config()}
    if region is not None:
        kwargs["region_name"] = region
    url = resolve_endpoint(endpoint, environ)
    if url is not None:
        kwargs["endpoint_url"] = url
    return cast(Any, sess).client("dynamodb", **kwargs)

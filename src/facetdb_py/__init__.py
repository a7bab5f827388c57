from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .batch import (
    GET_RETRY_POLICY,
    MAX_GET_BATCH_SIZE,
    MAX_WRITE_BATCH_SIZE,
    WRITE_RETRY_POLICY,
    BatchFailure,
    BatchResult,
    RetryPolicy,
)
from .errors import (
    AwsError,
    ConditionFailedError,
    FacetdbPyError,
    FacetDefinitionError,
    ItemNotProcessedError,
    NoSuchIndexError,
    NotFoundError,
    UnsupportedOperatorError,
    ValidationError,
)
from .expressions import CompiledExpression, compile_condition, compile_filter
from .keys import (
    DEFAULT_DELIMITER,
    Index,
    IndexConfiguration,
    KeyConfiguration,
    ShardConfiguration,
)
from .sharding import crc_shard

if TYPE_CHECKING:
    from .facet import Facet, FacetIndex, SingleItemResult
    from .query import PartitionQuery, QueryResult, QueryState
    from .runtime import StoreCallMetric, create_boto3_config, get_dynamodb_client, instrument_client
    from .schema import build_create_table_request, create_table, delete_table, ensure_table


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
    if name in {"Facet", "FacetIndex", "SingleItemResult"}:
        from . import facet

        return getattr(facet, name)
    if name in {"PartitionQuery", "QueryResult", "QueryState"}:
        from . import query

        return getattr(query, name)
    if name in {"StoreCallMetric", "create_boto3_config", "get_dynamodb_client", "instrument_client"}:
        from . import runtime

        return getattr(runtime, name)
    if name in {"build_create_table_request", "create_table", "delete_table", "ensure_table"}:
        from . import schema

        return getattr(schema, name)
    raise AttributeError(name)


__all__ = [
    "AwsError",
    "BatchFailure",
    "BatchResult",
    "build_create_table_request",
    "CompiledExpression",
    "compile_condition",
    "compile_filter",
    "ConditionFailedError",
    "crc_shard",
    "create_boto3_config",
    "create_table",
    "DEFAULT_DELIMITER",
    "delete_table",
    "ensure_table",
    "Facet",
    "FacetDefinitionError",
    "FacetIndex",
    "FacetdbPyError",
    "get_dynamodb_client",
    "GET_RETRY_POLICY",
    "Index",
    "IndexConfiguration",
    "instrument_client",
    "ItemNotProcessedError",
    "KeyConfiguration",
    "MAX_GET_BATCH_SIZE",
    "MAX_WRITE_BATCH_SIZE",
    "NoSuchIndexError",
    "NotFoundError",
    "PartitionQuery",
    "QueryResult",
    "QueryState",
    "RetryPolicy",
    "ShardConfiguration",
    "SingleItemResult",
    "StoreCallMetric",
    "UnsupportedOperatorError",
    "ValidationError",
    "WRITE_RETRY_POLICY",
    "__repo_version__",
    "__version__",
]

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import ClientError

from .aws_errors import error_code, map_client_error
from .errors import ValidationError
from .keys import PK, SK, Index, index_key_names

logger = logging.getLogger(__name__)

BillingMode = str  # "PAY_PER_REQUEST" | "PROVISIONED"


def build_create_table_request(
    table_name: str,
    *,
    indexes: Iterable[Index | str] = (),
    billing_mode: BillingMode = "PAY_PER_REQUEST",
    provisioned_throughput: Mapping[str, int] | None = None,
) -> dict[str, Any]:
    """Describe the single-table layout: string ``PK``/``SK`` plus one GSI per index slot."""
    if not table_name:
        raise ValueError("table_name is required")

    billing_mode = (billing_mode or "PAY_PER_REQUEST").strip() or "PAY_PER_REQUEST"
    if billing_mode not in {"PAY_PER_REQUEST", "PROVISIONED"}:
        raise ValidationError(f"unsupported billing_mode: {billing_mode}")

    resolved_throughput: dict[str, int] | None = None
    if billing_mode == "PROVISIONED":
        if provisioned_throughput is None:
            raise ValidationError("provisioned_throughput is required when billing_mode=PROVISIONED")
        resolved_throughput = dict(provisioned_throughput)

    attr_names = {PK, SK}
    gsis: list[dict[str, Any]] = []
    slots = sorted({Index(slot) for slot in indexes}, key=lambda s: int(s.value[3:]))
    for slot in slots:
        names = index_key_names(slot)
        attr_names.update((names.pk, names.sk))
        gsi: dict[str, Any] = {
            "IndexName": slot.value,
            "KeySchema": [
                {"AttributeName": names.pk, "KeyType": "HASH"},
                {"AttributeName": names.sk, "KeyType": "RANGE"},
            ],
            "Projection": {"ProjectionType": "ALL"},
        }
        if resolved_throughput is not None:
            gsi["ProvisionedThroughput"] = dict(resolved_throughput)
        gsis.append(gsi)

    req: dict[str, Any] = {
        "TableName": table_name,
        "BillingMode": billing_mode,
        "KeySchema": [
            {"AttributeName": PK, "KeyType": "HASH"},
            {"AttributeName": SK, "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": name, "AttributeType": "S"} for name in sorted(attr_names)
        ],
    }
    if resolved_throughput is not None:
        req["ProvisionedThroughput"] = resolved_throughput
    if gsis:
        req["GlobalSecondaryIndexes"] = gsis
    return req


@dataclass(frozen=True)
class WaitOptions:
    """How long to poll ``describe_table`` for a status change, and how often."""

    timeout_seconds: float = 300.0
    poll_seconds: float = 0.25
    sleep: Callable[[float], None] = time.sleep


_DEFAULT_WAIT = WaitOptions()


def create_table(
    table_name: str,
    *,
    client: Any | None = None,
    indexes: Iterable[Index | str] = (),
    billing_mode: BillingMode = "PAY_PER_REQUEST",
    provisioned_throughput: Mapping[str, int] | None = None,
    wait: WaitOptions | None = _DEFAULT_WAIT,
) -> None:
    """Create the table, treating "already exists" as success. ``wait=None`` returns immediately."""
    client = client or boto3.client("dynamodb")
    req = build_create_table_request(
        table_name,
        indexes=indexes,
        billing_mode=billing_mode,
        provisioned_throughput=provisioned_throughput,
    )

    try:
        client.create_table(**req)
    except ClientError as err:
        if error_code(err) != "ResourceInUseException":
            raise map_client_error(err) from err
        logger.debug("table %s already exists", table_name)

    if wait is not None:
        _wait_for_status(client, table_name, "ACTIVE", wait)


def ensure_table(
    table_name: str,
    *,
    client: Any | None = None,
    indexes: Iterable[Index | str] = (),
    billing_mode: BillingMode = "PAY_PER_REQUEST",
    provisioned_throughput: Mapping[str, int] | None = None,
    wait: WaitOptions | None = _DEFAULT_WAIT,
) -> None:
    """Create the table unless it already exists. An existing table is not altered."""
    client = client or boto3.client("dynamodb")

    if _table_status(client, table_name) is None:
        logger.info("creating table %s", table_name)
        create_table(
            table_name,
            client=client,
            indexes=indexes,
            billing_mode=billing_mode,
            provisioned_throughput=provisioned_throughput,
            wait=wait,
        )
    elif wait is not None:
        _wait_for_status(client, table_name, "ACTIVE", wait)


def delete_table(
    table_name: str,
    *,
    client: Any | None = None,
    ignore_missing: bool = False,
    wait: WaitOptions | None = _DEFAULT_WAIT,
) -> None:
    client = client or boto3.client("dynamodb")

    try:
        client.delete_table(TableName=table_name)
    except ClientError as err:
        if ignore_missing and error_code(err) == "ResourceNotFoundException":
            return
        raise map_client_error(err) from err

    if wait is not None:
        _wait_for_status(client, table_name, None, wait)


def _table_status(client: Any, table_name: str) -> str | None:
    """Current ``TableStatus``, or ``None`` when the table does not exist."""
    try:
        resp = client.describe_table(TableName=table_name)
    except ClientError as err:
        if error_code(err) == "ResourceNotFoundException":
            return None
        raise map_client_error(err) from err
    return str(resp.get("Table", {}).get("TableStatus", ""))


def _wait_for_status(client: Any, table_name: str, target: str | None, wait: WaitOptions) -> None:
    deadline = time.monotonic() + wait.timeout_seconds
    while time.monotonic() < deadline:
        status = _table_status(client, table_name)
        if status == target:
            return
        logger.debug("table %s is %s, waiting for %s", table_name, status or "missing", target or "deletion")
        wait.sleep(wait.poll_seconds)

    raise ValidationError(f"timed out waiting for table {target or 'deletion'}: {table_name}")

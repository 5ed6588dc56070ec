"""DynamoDB document store adapter (boto3 resource API).

boto3 is synchronous; every call is moved off the event loop with
``run_in_threadpool``. botocore errors are mapped to domain errors:

- ConditionalCheckFailedException on a conditional put → ConflictAppError
- ConditionalCheckFailedException on an update → NotFoundAppError
- anything else → StoreAppError (500)

Numbers come back from DynamoDB as ``Decimal`` and floats are rejected on the
way in, so values are converted at this boundary in both directions.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Callable, Mapping, TypeVar

import boto3
from boto3.dynamodb.conditions import Attr, ConditionBase, Key
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from app.adapters.store.base import AbstractDocumentStore, Item
from app.core.config import StoreSettings
from app.core.errors import ConflictAppError, NotFoundAppError, StoreAppError

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


def to_dynamo(value: Any) -> Any:
    """Convert floats (recursively) into Decimals accepted by DynamoDB.

    Examples:
        >>> to_dynamo({"lat": 6.9271, "tags": [1.5]})
        {'lat': Decimal('6.9271'), 'tags': [Decimal('1.5')]}
    """

    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, Mapping):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    return value


def from_dynamo(value: Any) -> Any:
    """Convert Decimals (recursively) back to int or float."""

    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, Mapping):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    return value


def build_update_expression(patch: Mapping[str, Any]) -> tuple[str, dict[str, str], dict[str, Any]]:
    """Build a ``SET`` update expression from a patch dict.

    Attribute names are always aliased so reserved words (``status``,
    ``name``, ``timestamp``) are safe.

    Returns:
        (expression, ExpressionAttributeNames, ExpressionAttributeValues)

    Raises:
        ValueError: If the patch is empty.

    Examples:
        >>> build_update_expression({"Status": "active"})
        ('SET #f0 = :v0', {'#f0': 'Status'}, {':v0': 'active'})
    """

    if not patch:
        raise ValueError("patch must not be empty")

    assignments: list[str] = []
    names: dict[str, str] = {}
    values: dict[str, Any] = {}
    for index, (attribute, value) in enumerate(patch.items()):
        names[f"#f{index}"] = attribute
        values[f":v{index}"] = to_dynamo(value)
        assignments.append(f"#f{index} = :v{index}")

    return "SET " + ", ".join(assignments), names, values


def build_filter(filters: Mapping[str, Any] | None) -> ConditionBase | None:
    """AND together equality conditions for every filter attribute."""

    condition: ConditionBase | None = None
    for attribute, value in (filters or {}).items():
        clause = Attr(attribute).eq(to_dynamo(value))
        condition = clause if condition is None else condition & clause
    return condition


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "Unknown")


class DynamoDBDocumentStore(AbstractDocumentStore):
    """AbstractDocumentStore backed by DynamoDB tables."""

    name = "dynamodb"

    def __init__(self, *, region: str, endpoint_url: str | None = None, resource: Any = None) -> None:
        """Initialize the boto3 resource.

        Args:
            region: AWS region name.
            endpoint_url: Optional custom endpoint (e.g., DynamoDB Local).
            resource: Injected boto3 DynamoDB resource (tests).
        """
        self._resource = resource or boto3.resource(
            "dynamodb",
            region_name=region,
            endpoint_url=endpoint_url or None,
        )

    @classmethod
    def from_settings(cls, store_settings: StoreSettings) -> DynamoDBDocumentStore:
        return cls(region=store_settings.region, endpoint_url=store_settings.endpoint_url)

    def _table(self, table: str) -> Any:
        return self._resource.Table(table)

    async def _call(self, operation: str, table: str, fn: Callable[[], T]) -> T:
        try:
            return await run_in_threadpool(fn)
        except (ClientError, BotoCoreError) as exc:
            code = _error_code(exc) if isinstance(exc, ClientError) else type(exc).__name__
            if code == CONDITIONAL_CHECK_FAILED:
                raise
            logger.error(
                "store.operation_failed",
                extra={
                    "operation": operation,
                    "table": table,
                    "error_type": code,
                    "error_msg": str(exc),
                },
            )
            raise StoreAppError(
                code="store_operation_failed",
                message=f"Failed to {operation} item",
                details={"table": table, "operation": operation},
            ) from exc

    async def get(self, table: str, key: Mapping[str, Any]) -> Item | None:
        response = await self._call(
            "get", table, lambda: self._table(table).get_item(Key=to_dynamo(key))
        )
        item = response.get("Item")
        return from_dynamo(item) if item is not None else None

    async def put(self, table: str, item: Mapping[str, Any], *, if_not_exists: str | None = None) -> None:
        kwargs: dict[str, Any] = {"Item": to_dynamo(item)}
        if if_not_exists:
            kwargs["ConditionExpression"] = Attr(if_not_exists).not_exists()

        try:
            await self._call("put", table, lambda: self._table(table).put_item(**kwargs))
        except ClientError as exc:
            raise ConflictAppError(
                code="item_already_exists",
                message="An item with this key already exists",
                details={"table": table, "resource_id": str(item.get(if_not_exists or ""))},
            ) from exc

    async def _paginate(self, operation: str, table: str, call: Callable[..., dict], params: dict[str, Any], limit: int | None) -> list[Item]:
        items: list[Item] = []
        start_key = None
        while True:
            page_params = dict(params)
            if start_key:
                page_params["ExclusiveStartKey"] = start_key
            response = await self._call(operation, table, lambda: call(**page_params))
            items.extend(from_dynamo(i) for i in response.get("Items", []))
            start_key = response.get("LastEvaluatedKey")
            if not start_key or (limit is not None and len(items) >= limit):
                break
        return items[:limit] if limit is not None else items

    async def scan(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Item]:
        params: dict[str, Any] = {}
        condition = build_filter(filters)
        if condition is not None:
            params["FilterExpression"] = condition
        return await self._paginate("scan", table, self._table(table).scan, params, limit)

    async def query(
        self,
        table: str,
        key_name: str,
        key_value: Any,
        *,
        index_name: str | None = None,
        limit: int | None = None,
        newest_first: bool = False,
        filters: Mapping[str, Any] | None = None,
    ) -> list[Item]:
        params: dict[str, Any] = {
            "KeyConditionExpression": Key(key_name).eq(to_dynamo(key_value)),
            "ScanIndexForward": not newest_first,
        }
        if index_name:
            params["IndexName"] = index_name
        condition = build_filter(filters)
        if condition is not None:
            params["FilterExpression"] = condition
        return await self._paginate("query", table, self._table(table).query, params, limit)

    async def update(self, table: str, key: Mapping[str, Any], patch: Mapping[str, Any]) -> Item:
        expression, names, values = build_update_expression(patch)
        partition_key = next(iter(key))
        names["#pk"] = partition_key

        try:
            response = await self._call(
                "update",
                table,
                lambda: self._table(table).update_item(
                    Key=to_dynamo(key),
                    UpdateExpression=expression,
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues=values,
                    ConditionExpression="attribute_exists(#pk)",
                    ReturnValues="ALL_NEW",
                ),
            )
        except ClientError as exc:
            raise NotFoundAppError(
                code="item_not_found",
                message="Item not found",
                details={"table": table},
            ) from exc
        return from_dynamo(response.get("Attributes", {}))

    async def delete(self, table: str, key: Mapping[str, Any]) -> bool:
        response = await self._call(
            "delete",
            table,
            lambda: self._table(table).delete_item(Key=to_dynamo(key), ReturnValues="ALL_OLD"),
        )
        return bool(response.get("Attributes"))

    async def count(self, table: str) -> int:
        total = 0
        start_key = None
        while True:
            params: dict[str, Any] = {"Select": "COUNT"}
            if start_key:
                params["ExclusiveStartKey"] = start_key
            response = await self._call("count", table, lambda: self._table(table).scan(**params))
            total += int(response.get("Count", 0))
            start_key = response.get("LastEvaluatedKey")
            if not start_key:
                return total

"""Infrastructure layer for work-item metadata persistence."""
from __future__ import annotations

import copy
import logging
from decimal import Decimal
from typing import Any, Collection, Mapping, Protocol

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from wa_analyzer.domain.errors import ConditionFailedError, WorkItemNotFoundError
from wa_analyzer.domain.work_items import MUTABLE_ATTRIBUTES

from .aws import error_code, upstream_error

logger = logging.getLogger(__name__)

PARTITION_KEY = "userId"
SORT_KEY = "fileId"

Conditions = Mapping[str, Collection[str]]


class WorkItemRepository(Protocol):
    """Persistence contract for work-item records keyed by (userId, fileId)."""

    def put(self, record: dict[str, Any], *, overwrite: bool = False) -> None: ...

    def get(self, user_id: str, file_id: str) -> dict[str, Any]: ...

    def update(
        self,
        user_id: str,
        file_id: str,
        attributes: Mapping[str, Any],
        *,
        conditions: Conditions | None = None,
    ) -> dict[str, Any]: ...

    def query(self, user_id: str) -> list[dict[str, Any]]: ...

    def delete(self, user_id: str, file_id: str) -> None: ...


def check_attributes(attributes: Mapping[str, Any]) -> None:
    unknown = sorted(set(attributes) - MUTABLE_ATTRIBUTES)
    if unknown:
        raise ValueError(f"Attributes cannot be updated: {', '.join(unknown)}")


class InMemoryWorkItemRepository:
    """Simple in-memory repository for fast iteration and tests."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], dict[str, Any]] = {}

    # ------------------------------------------------------------------
    # CRUD operations
    # ------------------------------------------------------------------
    def put(self, record: dict[str, Any], *, overwrite: bool = False) -> None:
        key = (record[PARTITION_KEY], record[SORT_KEY])
        if not overwrite and key in self._records:
            raise ConditionFailedError("Work item already exists")
        self._records[key] = copy.deepcopy(record)

    def get(self, user_id: str, file_id: str) -> dict[str, Any]:
        record = self._records.get((user_id, file_id))
        if record is None:
            raise WorkItemNotFoundError(user_id, file_id)
        return copy.deepcopy(record)

    def update(
        self,
        user_id: str,
        file_id: str,
        attributes: Mapping[str, Any],
        *,
        conditions: Conditions | None = None,
    ) -> dict[str, Any]:
        check_attributes(attributes)
        record = self._records.get((user_id, file_id))
        if record is None:
            raise WorkItemNotFoundError(user_id, file_id)
        for attribute, allowed in (conditions or {}).items():
            if record.get(attribute) not in allowed:
                raise ConditionFailedError()
        record.update(copy.deepcopy(dict(attributes)))
        return copy.deepcopy(record)

    def query(self, user_id: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(record) for (owner, _), record in self._records.items() if owner == user_id]

    def delete(self, user_id: str, file_id: str) -> None:
        self._records.pop((user_id, file_id), None)

    def reset(self) -> None:
        self._records.clear()


class DynamoDBWorkItemRepository:
    """Work-item records in a DynamoDB table (hash ``userId``, range ``fileId``)."""

    def __init__(self, table_name: str, client: Any) -> None:
        if not table_name:
            raise ValueError("table name must be configured for the DynamoDB repository")
        self._table = table_name
        self._client = client
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    # ------------------------------------------------------------------
    # marshalling helpers
    # ------------------------------------------------------------------
    def _key(self, user_id: str, file_id: str) -> dict[str, Any]:
        return self._marshall({PARTITION_KEY: user_id, SORT_KEY: file_id})

    def _marshall(self, values: Mapping[str, Any]) -> dict[str, Any]:
        return {name: self._serializer.serialize(value) for name, value in values.items() if value is not None}

    def _unmarshall(self, item: Mapping[str, Any]) -> dict[str, Any]:
        record = {name: self._deserializer.deserialize(value) for name, value in item.items()}
        for name, value in record.items():
            if isinstance(value, Decimal):
                record[name] = int(value) if value == value.to_integral_value() else float(value)
        return record

    # ------------------------------------------------------------------
    # CRUD operations
    # ------------------------------------------------------------------
    def put(self, record: dict[str, Any], *, overwrite: bool = False) -> None:
        request: dict[str, Any] = {"TableName": self._table, "Item": self._marshall(record)}
        if not overwrite:
            request["ConditionExpression"] = "attribute_not_exists(#pk)"
            request["ExpressionAttributeNames"] = {"#pk": PARTITION_KEY}
        try:
            self._client.put_item(**request)
        except ClientError as exc:
            if error_code(exc) == "ConditionalCheckFailedException":
                raise ConditionFailedError("Work item already exists") from exc
            raise upstream_error("Failed to store work item metadata", exc) from exc
        except BotoCoreError as exc:
            raise upstream_error("Failed to store work item metadata", exc) from exc

    def get(self, user_id: str, file_id: str) -> dict[str, Any]:
        try:
            response = self._client.get_item(
                TableName=self._table,
                Key=self._key(user_id, file_id),
                ConsistentRead=True,
            )
        except (ClientError, BotoCoreError) as exc:
            raise upstream_error("Failed to get work item", exc) from exc
        item = response.get("Item")
        if not item:
            raise WorkItemNotFoundError(user_id, file_id)
        return self._unmarshall(item)

    def update(
        self,
        user_id: str,
        file_id: str,
        attributes: Mapping[str, Any],
        *,
        conditions: Conditions | None = None,
    ) -> dict[str, Any]:
        check_attributes(attributes)
        if not attributes:
            return self.get(user_id, file_id)

        names: dict[str, str] = {"#pk": PARTITION_KEY}
        values: dict[str, Any] = {}
        assignments: list[str] = []
        for index, (attribute, value) in enumerate(sorted(attributes.items())):
            names[f"#a{index}"] = attribute
            values[f":a{index}"] = value
            assignments.append(f"#a{index} = :a{index}")

        clauses = ["attribute_exists(#pk)"]
        for index, (attribute, allowed) in enumerate(sorted((conditions or {}).items())):
            names[f"#c{index}"] = attribute
            placeholders: list[str] = []
            for position, candidate in enumerate(sorted(allowed)):
                placeholder = f":c{index}_{position}"
                values[placeholder] = candidate
                placeholders.append(placeholder)
            clauses.append(f"#c{index} IN ({', '.join(placeholders)})")

        try:
            response = self._client.update_item(
                TableName=self._table,
                Key=self._key(user_id, file_id),
                UpdateExpression="SET " + ", ".join(assignments),
                ConditionExpression=" AND ".join(clauses),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=self._marshall(values),
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if error_code(exc) == "ConditionalCheckFailedException":
                # raises WorkItemNotFoundError when the record is gone
                self.get(user_id, file_id)
                raise ConditionFailedError() from exc
            raise upstream_error("Failed to update work item", exc) from exc
        except BotoCoreError as exc:
            raise upstream_error("Failed to update work item", exc) from exc
        return self._unmarshall(response.get("Attributes", {}))

    def query(self, user_id: str) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        request: dict[str, Any] = {
            "TableName": self._table,
            "KeyConditionExpression": "#pk = :pk",
            "ExpressionAttributeNames": {"#pk": PARTITION_KEY},
            "ExpressionAttributeValues": self._marshall({":pk": user_id}),
        }
        try:
            while True:
                response = self._client.query(**request)
                records.extend(self._unmarshall(item) for item in response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                request["ExclusiveStartKey"] = last_key
        except (ClientError, BotoCoreError) as exc:
            raise upstream_error("Failed to list work items", exc) from exc
        return records

    def delete(self, user_id: str, file_id: str) -> None:
        # DeleteItem succeeds when the key is already absent
        try:
            self._client.delete_item(TableName=self._table, Key=self._key(user_id, file_id))
        except (ClientError, BotoCoreError) as exc:
            raise upstream_error("Failed to delete work item metadata", exc) from exc

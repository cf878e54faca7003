"""DynamoDB storage for the directory cache."""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set, TypeVar

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from ..errors import CacheBackendError, MetadataConflictError
from ..models import IdentityRecord, SyncMetadata, UsageStats
from . import entities
from .base import CacheStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DynamoDBCacheStorage(CacheStorage):
    """
    Storage in two DynamoDB tables, one for records and one for sync metadata.

    Both tables use ``partition_key`` as hash key and ``row_key`` as range key.
    Records live in the ``Users`` partition keyed by principal name; the
    metadata singleton is ``SyncMetadata``/``UserDeltaSync``. Tables are created
    on first use. boto3 is blocking, so every call runs in the default executor.
    """

    backend_type = "dynamodb"

    def __init__(
        self,
        records_table_name: str = "usercache",
        metadata_table_name: str = "usersyncmetadata",
        region: Optional[str] = None,
        profile: Optional[str] = None,
    ):
        """
        Initialize DynamoDB storage.

        Args:
            records_table_name: Name of the table holding identity records
            metadata_table_name: Name of the table holding sync metadata
            region: AWS region for the tables
            profile: AWS profile to use for authentication
        """
        super().__init__(records_table_name, metadata_table_name)
        self.region = region
        self.profile = profile
        self._session = None
        self._client = None
        self._resource = None
        self._tables: Dict[str, Any] = {}
        self._existing_tables: Set[str] = set()

        logger.debug(
            f"Initialized DynamoDB storage: tables={records_table_name},{metadata_table_name}, "
            f"region={region}, profile={profile}"
        )

    @property
    def session(self):
        """Get the boto3 session, creating it if needed."""
        if self._session is None:
            session_kwargs = {}
            if self.profile:
                session_kwargs["profile_name"] = self.profile
            if self.region:
                session_kwargs["region_name"] = self.region
            try:
                self._session = boto3.Session(**session_kwargs)
            except Exception as e:
                raise CacheBackendError(
                    f"Failed to create AWS session: {e}",
                    backend_type=self.backend_type,
                    original_error=e,
                )
        return self._session

    @property
    def client(self):
        """Get DynamoDB client, creating it if needed."""
        if self._client is None:
            self._client = self.session.client("dynamodb")
            logger.debug("Created DynamoDB client")
        return self._client

    def _table(self, table_name: str):
        """Get the table resource for ``table_name``, creating the table if needed."""
        self._ensure_table_exists(table_name)
        if table_name not in self._tables:
            if self._resource is None:
                self._resource = self.session.resource("dynamodb")
            self._tables[table_name] = self._resource.Table(table_name)
        return self._tables[table_name]

    async def _run(self, description: str, func: Callable[[], T]) -> T:
        """Run a blocking boto3 call in the executor, mapping SDK errors."""
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, func)
        except (CacheBackendError, MetadataConflictError):
            raise
        except (ClientError, BotoCoreError) as e:
            raise CacheBackendError(
                f"DynamoDB {description} failed", backend_type=self.backend_type, original_error=e
            )

    def _ensure_table_exists(self, table_name: str) -> None:
        if table_name in self._existing_tables:
            return
        if not self._check_table_exists(table_name):
            logger.info(f"Creating DynamoDB table: {table_name}")
            self._create_table(table_name)
        self._existing_tables.add(table_name)

    def _check_table_exists(self, table_name: str) -> bool:
        try:
            self.client.describe_table(TableName=table_name)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
                return False
            raise

    def _create_table(self, table_name: str) -> None:
        try:
            self.client.create_table(
                TableName=table_name,
                KeySchema=[
                    {"AttributeName": entities.PARTITION_KEY, "KeyType": "HASH"},
                    {"AttributeName": entities.ROW_KEY, "KeyType": "RANGE"},
                ],
                AttributeDefinitions=[
                    {"AttributeName": entities.PARTITION_KEY, "AttributeType": "S"},
                    {"AttributeName": entities.ROW_KEY, "AttributeType": "S"},
                ],
                BillingMode="PAY_PER_REQUEST",
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") != "ResourceInUseException":
                raise
            logger.debug(f"Table {table_name} already exists")

        waiter = self.client.get_waiter("table_exists")
        waiter.wait(TableName=table_name, WaiterConfig={"Delay": 2, "MaxAttempts": 30})
        logger.info(f"DynamoDB table {table_name} is ready")

    def _query_users(self, **kwargs) -> List[Dict[str, Any]]:
        table = self._table(self.records_table_name)
        query_kwargs = {
            "KeyConditionExpression": Key(entities.PARTITION_KEY).eq(entities.USERS_PARTITION),
            **kwargs,
        }
        items: List[Dict[str, Any]] = []
        while True:
            response = table.query(**query_kwargs)
            items.extend(response.get("Items", []))
            if "LastEvaluatedKey" not in response:
                return items
            query_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]

    async def _load_all_records(self) -> List[IdentityRecord]:
        items = await self._run("query", self._query_users)
        return [entities.item_to_record(item) for item in items]

    async def _load_record(self, key: str) -> Optional[IdentityRecord]:
        def get_item():
            table = self._table(self.records_table_name)
            return table.get_item(Key=entities.record_key(key), ConsistentRead=True)

        response = await self._run("get_item", get_item)
        item = response.get("Item")
        return entities.item_to_record(item) if item else None

    def _merge_record(self, record: IdentityRecord) -> None:
        """Replace identity attributes in place; usage attributes are only touched if present."""
        values = entities.identity_attributes(record)
        values["user_principal_name"] = record.user_principal_name
        if record.usage is not None:
            values.update(entities.usage_attributes(record.usage))

        names: Dict[str, str] = {}
        expression_values: Dict[str, Any] = {}
        set_clauses = []
        remove_clauses = []
        for index, (name, value) in enumerate(values.items()):
            placeholder = f"#a{index}"
            names[placeholder] = name
            if value is None:
                remove_clauses.append(placeholder)
            else:
                expression_values[f":v{index}"] = value
                set_clauses.append(f"{placeholder} = :v{index}")

        expression = "SET " + ", ".join(set_clauses)
        if remove_clauses:
            expression += " REMOVE " + ", ".join(remove_clauses)

        self._table(self.records_table_name).update_item(
            Key=entities.record_key(record.key),
            UpdateExpression=expression,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=expression_values,
        )

    async def _merge_records(self, records: List[IdentityRecord]) -> int:
        def merge_all():
            for record in records:
                self._merge_record(record)
            return len(records)

        return await self._run("update_item", merge_all)

    async def _update_usage(self, key: str, usage: UsageStats) -> bool:
        values = entities.usage_attributes(usage)
        names = {f"#u{index}": name for index, name in enumerate(values)}
        set_clauses = []
        remove_clauses = []
        expression_values: Dict[str, Any] = {":false": False}
        for index, value in enumerate(values.values()):
            if value is None:
                remove_clauses.append(f"#u{index}")
            else:
                expression_values[f":u{index}"] = value
                set_clauses.append(f"#u{index} = :u{index}")

        expression = "SET " + ", ".join(set_clauses)
        if remove_clauses:
            expression += " REMOVE " + ", ".join(remove_clauses)
        names["#rk"] = entities.ROW_KEY
        names["#deleted"] = "is_deleted"

        def update_item():
            try:
                self._table(self.records_table_name).update_item(
                    Key=entities.record_key(key),
                    UpdateExpression=expression,
                    ConditionExpression="attribute_exists(#rk) AND #deleted = :false",
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues=expression_values,
                )
                return True
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                    return False
                raise

        return await self._run("update_item", update_item)

    async def _delete_all_records(self) -> int:
        def delete_all():
            items = self._query_users(
                ProjectionExpression="#pk, #rk",
                ExpressionAttributeNames={"#pk": entities.PARTITION_KEY, "#rk": entities.ROW_KEY},
            )
            with self._table(self.records_table_name).batch_writer() as batch:
                for item in items:
                    batch.delete_item(
                        Key={
                            entities.PARTITION_KEY: item[entities.PARTITION_KEY],
                            entities.ROW_KEY: item[entities.ROW_KEY],
                        }
                    )
            return len(items)

        return await self._run("batch delete", delete_all)

    def _get_metadata_item(self) -> Optional[Dict[str, Any]]:
        table = self._table(self.metadata_table_name)
        response = table.get_item(Key=entities.metadata_key(), ConsistentRead=True)
        return response.get("Item")

    async def _load_metadata(self) -> Optional[SyncMetadata]:
        item = await self._run("get_item", self._get_metadata_item)
        return entities.item_to_metadata(item) if item else None

    async def _store_metadata(
        self, metadata: SyncMetadata, expected_version: Optional[int]
    ) -> SyncMetadata:
        def put_metadata() -> SyncMetadata:
            if expected_version is None:
                item = self._get_metadata_item()
                base_version = entities.item_to_metadata(item).version if item else 0
                condition = None
            else:
                base_version = expected_version
                if expected_version == 0:
                    condition = Attr(entities.ROW_KEY).not_exists()
                else:
                    condition = Attr("version").eq(expected_version)

            stored = SyncMetadata.from_dict({**metadata.to_dict(), "version": base_version + 1})
            put_kwargs: Dict[str, Any] = {"Item": entities.metadata_to_item(stored)}
            if condition is not None:
                put_kwargs["ConditionExpression"] = condition

            try:
                self._table(self.metadata_table_name).put_item(**put_kwargs)
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") != "ConditionalCheckFailedException":
                    raise
                current = self._get_metadata_item()
                actual = entities.item_to_metadata(current).version if current else 0
                raise MetadataConflictError(expected_version, actual)
            return stored

        return await self._run("put_item", put_metadata)

    async def health_check(self) -> bool:
        def check():
            for table_name in (self.records_table_name, self.metadata_table_name):
                if not self._check_table_exists(table_name):
                    # Reachable even though the table will only be created on first use
                    self.client.list_tables(Limit=1)
            return True

        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, check)
        except NoCredentialsError:
            logger.error("DynamoDB health check failed: No AWS credentials available")
            return False
        except (ClientError, BotoCoreError, CacheBackendError) as e:
            logger.error(f"DynamoDB health check failed: {e}")
            return False

    async def delete_tables(self) -> None:
        def delete():
            for table_name in (self.records_table_name, self.metadata_table_name):
                try:
                    self.client.delete_table(TableName=table_name)
                except ClientError as e:
                    if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
                        continue
                    raise
                waiter = self.client.get_waiter("table_not_exists")
                waiter.wait(TableName=table_name, WaiterConfig={"Delay": 2, "MaxAttempts": 30})
                logger.info(f"Deleted DynamoDB table {table_name}")
                self._existing_tables.discard(table_name)
                self._tables.pop(table_name, None)

        await self._run("delete_table", delete)

    async def aclose(self) -> None:
        self._tables.clear()
        self._existing_tables.clear()
        self._resource = None
        self._client = None
        self._session = None

"""Mapping between cache models and DynamoDB items."""

from dataclasses import fields
from decimal import Decimal
from typing import Any, Dict, List

from ..models import IdentityRecord, SyncMetadata, UsageStats, format_datetime

PARTITION_KEY = "partition_key"
ROW_KEY = "row_key"

USERS_PARTITION = "Users"
METADATA_PARTITION = "SyncMetadata"
METADATA_ROW = "UserDeltaSync"

USAGE_PREFIX = "usage_"

_DATETIME_FIELDS = {"hire_date", "last_synced"}

# Identity attributes written by sync; everything except the usage block
IDENTITY_ATTRIBUTES: List[str] = [
    f.name for f in fields(IdentityRecord) if f.name not in ("usage", "user_principal_name")
]
USAGE_ATTRIBUTES: List[str] = [f"{USAGE_PREFIX}{f.name}" for f in fields(UsageStats)]


def _plain(value: Any) -> Any:
    """Convert the Decimal values returned by the resource API into ints."""
    if isinstance(value, Decimal):
        return int(value)
    return value


def record_key(key: str) -> Dict[str, str]:
    return {PARTITION_KEY: USERS_PARTITION, ROW_KEY: key}


def metadata_key() -> Dict[str, str]:
    return {PARTITION_KEY: METADATA_PARTITION, ROW_KEY: METADATA_ROW}


def identity_attributes(record: IdentityRecord) -> Dict[str, Any]:
    """Identity attribute values of a record; None means the attribute is absent."""
    values = {}
    for name in IDENTITY_ATTRIBUTES:
        value = getattr(record, name)
        values[name] = format_datetime(value) if name in _DATETIME_FIELDS else value
    return values


def usage_attributes(usage: UsageStats) -> Dict[str, Any]:
    """Usage block flattened into prefixed attribute values."""
    return {f"{USAGE_PREFIX}{name}": value for name, value in usage.to_dict().items()}


def item_to_record(item: Dict[str, Any]) -> IdentityRecord:
    data = {name: _plain(item.get(name)) for name in IDENTITY_ATTRIBUTES if name in item}
    data["user_principal_name"] = item.get("user_principal_name") or item[ROW_KEY]

    usage_data = {
        name[len(USAGE_PREFIX):]: item[name] for name in USAGE_ATTRIBUTES if name in item
    }
    if usage_data:
        data["usage"] = usage_data

    return IdentityRecord.from_dict(data)


def metadata_to_item(metadata: SyncMetadata) -> Dict[str, Any]:
    item: Dict[str, Any] = metadata_key()
    item.update({name: value for name, value in metadata.to_dict().items() if value is not None})
    return item


def item_to_metadata(item: Dict[str, Any]) -> SyncMetadata:
    return SyncMetadata.from_dict({name: _plain(value) for name, value in item.items()})

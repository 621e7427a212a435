"""
PynamoDB model for UGC ad records.

Uses single-table design with composite sort key pattern:
- Session:          PK = SESSION#<id>,  SK = METADATA
- Scene video job:  PK = SESSION#<id>,  SK = JOB#<sceneIndex:03d>
- Product:          PK = PRODUCT#<id>,  SK = METADATA

The record body is kept in a single JSON attribute; the pydantic schemas in
ugc_schemas.py own its shape.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from pynamodb.attributes import JSONAttribute, UnicodeAttribute, UTCDateTimeAttribute
from pynamodb.indexes import AllProjection, GlobalSecondaryIndex

from config import settings
from dynamodb_config import BaseDynamoModel

METADATA_SK = "METADATA"


def session_pk(session_id: str) -> str:
    return f"SESSION#{session_id}"


def job_sk(scene_index: int) -> str:
    return f"JOB#{scene_index:03d}"


def product_pk(product_id: str) -> str:
    return f"PRODUCT#{product_id}"


def owner_gsi_pk(owner_id: str) -> str:
    return f"USER#{owner_id}"


class OwnerIndex(GlobalSecondaryIndex):
    """
    Global Secondary Index for listing a user's sessions newest first.
    """

    class Meta:
        index_name = "owner-created-index"
        read_capacity_units = 5
        write_capacity_units = 5
        projection = AllProjection()

    GSI1PK = UnicodeAttribute(hash_key=True)  # USER#<ownerId>
    GSI1SK = UnicodeAttribute(range_key=True)  # createdAt ISO string


class UGCRecordItem(BaseDynamoModel):
    """
    DynamoDB model for sessions, scene video jobs and products.
    """

    class Meta:
        table_name = settings.DYNAMODB_TABLE_NAME
        region = settings.DYNAMODB_REGION
        # DynamoDB Local requires explicit (even fake) credentials
        if settings.USE_LOCAL_DYNAMODB:
            host = settings.DYNAMODB_ENDPOINT
            aws_access_key_id = settings.dynamodb_access_key_id
            aws_secret_access_key = settings.dynamodb_secret_access_key

    PK = UnicodeAttribute(hash_key=True)
    SK = UnicodeAttribute(range_key=True)

    entityType = UnicodeAttribute()  # "session", "scene_video_job" or "product"
    data = JSONAttribute()
    updatedAt = UTCDateTimeAttribute()

    # GSI attributes, only set on session items
    GSI1PK = UnicodeAttribute(null=True)
    GSI1SK = UnicodeAttribute(null=True)
    owner_index = OwnerIndex()

    @classmethod
    def from_record(cls, pk: str, sk: str, record: Dict[str, Any]) -> "UGCRecordItem":
        """Build an item from a plain record dict (as produced by RecordStore callers)."""
        item = cls(pk, sk)
        item.entityType = entity_type_for(pk, sk)
        item.data = record
        item.updatedAt = datetime.now(timezone.utc)
        if item.entityType == "session" and record.get("ownerId"):
            item.GSI1PK = owner_gsi_pk(record["ownerId"])
            item.GSI1SK = str(record.get("createdAt") or item.updatedAt.isoformat())
        return item

    def to_record(self) -> Dict[str, Any]:
        return dict(self.data or {})


def entity_type_for(pk: str, sk: str) -> str:
    if pk.startswith("PRODUCT#"):
        return "product"
    if sk.startswith("JOB#"):
        return "scene_video_job"
    return "session"

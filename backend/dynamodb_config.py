"""
PynamoDB base model and table bootstrap for the UGC record table.
"""

from typing import Type

import structlog
from pynamodb.exceptions import TableError
from pynamodb.models import Model

from config import settings

logger = structlog.get_logger().bind(service="dynamodb")

_TIMEOUT_MARKERS = ("timeout", "timed out")
_ALREADY_EXISTS_MARKERS = ("already exists", "resourceinuseexception")


class BaseDynamoModel(Model):
    """
    Shared Meta for UGC models.

    Credentials stay out of here: local DynamoDB models set them on their own
    Meta, production relies on boto3's credential chain.
    """

    class Meta:
        region = settings.DYNAMODB_REGION


def _error_matches(error: TableError, markers) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in markers)


def _table_exists(model: Type[Model]) -> bool:
    try:
        return model.exists()
    except TableError as e:
        if not _error_matches(e, _TIMEOUT_MARKERS):
            raise
        # Treat a slow describe as missing; create_table tolerates a race
        logger.warning("dynamodb_exists_check_timeout", table_name=model.Meta.table_name, error=str(e))
        return False


def ensure_table(model: Type[Model], read_capacity: int = 5, write_capacity: int = 5) -> bool:
    """Create the model's table if needed. Returns True when a table was created."""
    table_name = model.Meta.table_name
    if _table_exists(model):
        logger.info("dynamodb_table_exists", table_name=table_name)
        return False

    logger.info("dynamodb_table_creating", table_name=table_name)
    try:
        model.create_table(read_capacity_units=read_capacity, write_capacity_units=write_capacity, wait=True)
    except TableError as e:
        if _error_matches(e, _ALREADY_EXISTS_MARKERS):
            logger.info("dynamodb_table_created_concurrently", table_name=table_name)
            return False
        raise
    logger.info("dynamodb_table_created", table_name=table_name)
    return True


def init_dynamodb_tables() -> None:
    from ugc_models import UGCRecordItem

    try:
        ensure_table(UGCRecordItem)
    except Exception as e:
        logger.error("dynamodb_table_init_error", table_name=settings.DYNAMODB_TABLE_NAME, error=str(e))
        raise

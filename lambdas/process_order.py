"""Lambda handler for processing orders from the FIFO order queue."""

import json
import os
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from order_validation import order_id_of, validate_order


# Environment configuration
table_name = os.environ["TABLE_NAME"]
event_bus_name = os.environ["EVENT_BUS_NAME"]
ttl_days = int(os.environ.get("TTL_DAYS", "30"))

EVENT_SOURCE = "order-processing"
STATUS_CHANGED_DETAIL_TYPE = "OrderStatusChanged"


class EventPublishError(Exception):
    """Raised when EventBridge rejects a status change event."""


class InvalidOrderError(Exception):
    """Raised for order messages that can never be processed."""

    def __init__(self, reason: str, order_id: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.order_id = order_id


@lru_cache(maxsize=1)
def _get_table():
    """Get or initialise the DynamoDB table (cached)."""
    dynamodb = boto3.resource("dynamodb")
    return dynamodb.Table(table_name)


@lru_cache(maxsize=1)
def _get_events_client():
    """Get or initialise the EventBridge client (cached)."""
    return boto3.client("events")


def _parse_order(raw_body: str) -> Dict[str, Any]:
    """Decode and validate an order message body."""
    try:
        body = json.loads(raw_body)
    except (TypeError, json.JSONDecodeError):
        raise InvalidOrderError("Message body is not valid JSON") from None

    error = validate_order(body)
    if error:
        raise InvalidOrderError(error, order_id_of(body))

    return body


def _publish_status(order_id: str, status: str, **detail: Any) -> None:
    """Publish an order status transition to the event bus."""
    response = _get_events_client().put_events(
        Entries=[
            {
                "Source": EVENT_SOURCE,
                "DetailType": STATUS_CHANGED_DETAIL_TYPE,
                "Detail": json.dumps({"orderId": order_id, "status": status, **detail}),
                "EventBusName": event_bus_name,
            }
        ]
    )
    if response.get("FailedEntryCount", 0):
        entry = response["Entries"][0]
        raise EventPublishError(
            f"Event for order {order_id} rejected: {entry.get('ErrorCode')}"
        )
    print(f"Published {status} event for order {order_id}")


def _reserve_inventory(order: Dict[str, Any]) -> int:
    """Write one inventory row per ordered product and return the row count.

    Validation guarantees productIds are unique within an order, so a failed
    key condition can only mean a redelivery of this same message.
    """
    order_id = order["orderId"]
    now = datetime.now(timezone.utc)
    reserved_at = now.isoformat()
    expiration_time = int((now + timedelta(days=ttl_days)).timestamp())

    for item in order["items"]:
        product_id = item["productId"]
        try:
            _get_table().put_item(
                Item={
                    "OrderID": order_id,
                    "ProductID": product_id,
                    "Quantity": item["quantity"],
                    "Status": "RESERVED",
                    "ReservedAt": reserved_at,
                    "ExpirationTime": expiration_time,
                },
                ConditionExpression="attribute_not_exists(OrderID)",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                # Row written by an earlier delivery of this message
                print(f"Inventory for {order_id}/{product_id} already reserved")
            else:
                raise

    return len(order["items"])


def _process_record(record: Dict[str, Any]) -> None:
    """Process a single order message."""
    try:
        order = _parse_order(record.get("body"))
    except InvalidOrderError as e:
        print(f"Rejecting message {record.get('messageId')}: {e.reason}")
        if e.order_id:
            _publish_status(e.order_id, "FAILED", reason=e.reason)
        return

    row_count = _reserve_inventory(order)
    print(f"Reserved {row_count} inventory rows for order {order['orderId']}")

    _publish_status(order["orderId"], "PROCESSED", itemCount=row_count)


def handler(event: Dict[str, Any], context: Any) -> Dict[str, List[Dict[str, str]]]:
    """Process order messages from the FIFO queue.

    Invalid orders are dropped after a FAILED status event is published.
    Transient errors are reported as batch item failures. Once a record
    fails, every remaining record in the batch is reported as failed too so
    that FIFO ordering is preserved on redelivery.

    Args:
        event: SQS event containing order messages.
        context: Lambda context object.

    Returns:
        Dict with batchItemFailures list for partial failure handling.
    """
    batch_item_failures = []

    for record in event.get("Records", []):
        message_id = record.get("messageId")

        if batch_item_failures:
            print(f"Deferring message {message_id} after earlier failure")
            batch_item_failures.append({"itemIdentifier": message_id})
            continue

        try:
            _process_record(record)
        except Exception as e:
            print(f"Error processing message {message_id}: {str(e)}")
            batch_item_failures.append({"itemIdentifier": message_id})

    return {"batchItemFailures": batch_item_failures}

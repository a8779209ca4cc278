"""Lambda handler for submitting orders to the FIFO order processing queue."""

import json
import os
from functools import lru_cache
from typing import Any, Dict

import boto3

from order_validation import validate_order


# Environment configuration
queue_url = os.environ["QUEUE_URL"]


@lru_cache(maxsize=1)
def _get_sqs_client():
    """Get or initialise the SQS client (cached)."""
    return boto3.client("sqs")


def handler(event: Any, context: Any) -> Dict[str, Any]:
    """Validate an order and enqueue it for processing.

    The orderId is used as both the message group and the deduplication ID,
    so resubmitting an order within the FIFO deduplication window is a no-op.

    Args:
        event: Lambda event containing the order payload.
        context: Lambda context object.

    Returns:
        Response dict with statusCode and body containing the result message.
    """
    try:
        # Parse the body (for both direct invocation and API Gateway)
        if isinstance(event, dict) and isinstance(event.get("body"), str):
            body = json.loads(event["body"])
        else:
            body = event

        error = validate_order(body)
        if error:
            return {"statusCode": 400, "body": json.dumps({"error": error})}

        order_id = body["orderId"]
        message = {"orderId": order_id, "items": body["items"]}

        response = _get_sqs_client().send_message(
            QueueUrl=queue_url,
            MessageBody=json.dumps(message),
            MessageGroupId=order_id,
            MessageDeduplicationId=order_id,
        )
        print(f"Queued order {order_id} as message {response['MessageId']}")

        return {
            "statusCode": 202,
            "body": json.dumps(
                {
                    "message": "Order accepted for processing",
                    "orderId": order_id,
                    "messageId": response["MessageId"],
                }
            ),
        }

    except json.JSONDecodeError:
        return {
            "statusCode": 400,
            "body": json.dumps({"error": "Invalid JSON in request body"}),
        }
    except Exception as e:
        print(f"Error submitting order: {str(e)}")
        return {
            "statusCode": 500,
            "body": json.dumps({"error": "Internal server error"}),
        }

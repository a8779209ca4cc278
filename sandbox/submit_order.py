#!/usr/bin/env python3
"""Submit orders to the order submission Lambda running in LocalStack."""

import json
import random
import sys
import time

import boto3
import requests

LOCALSTACK_ENDPOINT = "http://localhost:4566"

# Colors for output
GREEN = "\033[0;32m"
BLUE = "\033[0;34m"
YELLOW = "\033[1;33m"
NC = "\033[0m"  # No Color

PRODUCTS = ["widget", "gadget", "gizmo", "doohickey", "sprocket"]


def get_lambda_client():
    """Create Lambda client pointing to LocalStack."""
    return boto3.client(
        "lambda",
        endpoint_url=LOCALSTACK_ENDPOINT,
        region_name="us-east-1",
        aws_access_key_id="test",
        aws_secret_access_key="test",
    )


def check_localstack() -> bool:
    """Check if LocalStack is running."""
    try:
        response = requests.get(f"{LOCALSTACK_ENDPOINT}/_localstack/health", timeout=2)
        return response.status_code == 200
    except requests.RequestException:
        return False


def parse_items(args):
    """Parse PRODUCT:QUANTITY arguments into order items."""
    items = []
    for arg in args:
        product_id, _, quantity = arg.partition(":")
        items.append({"productId": product_id, "quantity": int(quantity or "1")})
    return items


def random_items():
    """Pick a random basket of products."""
    chosen = random.sample(PRODUCTS, random.randint(1, 3))
    return [{"productId": p, "quantity": random.randint(1, 5)} for p in chosen]


def main():
    """Main entry point."""
    if "--help" in sys.argv or "-h" in sys.argv:
        print(f"{BLUE}Usage:{NC}")
        print(f"  {sys.argv[0]}                            - Random order")
        print(f"  {sys.argv[0]} ORDER_ID PRODUCT:QTY ...   - Specific order")
        return

    if not check_localstack():
        print(f"{YELLOW}[WARN]  LocalStack is not running!{NC}")
        sys.exit(1)

    if len(sys.argv) > 1:
        order_id = sys.argv[1]
        items = parse_items(sys.argv[2:]) or random_items()
    else:
        order_id = f"order-{int(time.time())}-{random.randint(1000, 9999)}"
        items = random_items()

    payload = {"orderId": order_id, "items": items}
    print(f"{BLUE}Submitting order...{NC}")
    print(json.dumps(payload, indent=2))

    try:
        response = get_lambda_client().invoke(
            FunctionName="order-submission-function",
            InvocationType="RequestResponse",
            Payload=json.dumps(payload),
        )
    except Exception as e:
        print(f"{YELLOW}[ERROR] Error invoking Lambda: {str(e)}{NC}")
        sys.exit(1)

    response_payload = json.loads(response["Payload"].read())
    status_code = response_payload.get("statusCode")
    body = json.loads(response_payload.get("body", "{}"))

    print(f"\n{GREEN}[OK] Lambda Response:{NC}")
    print(f"  Status Code: {status_code}")
    print(f"  Body: {json.dumps(body, indent=2)}\n")

    if status_code == 202:
        print(f"{BLUE}What happens next:{NC}")
        print("  1. ProcessOrder Lambda reads the order from the FIFO queue")
        print("  2. One inventory row is reserved per product")
        print("  3. An OrderStatusChanged event starts the state machine")
        print("  4. The state machine publishes a notification\n")
        print(f"Check inventory with: {GREEN}python sandbox/view_inventory.py {order_id}{NC}")
    else:
        print(f"{YELLOW}[WARN]  Order was not accepted{NC}")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""View inventory reservations in the LocalStack DynamoDB table."""

import sys
from typing import Any, Dict, List

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

LOCALSTACK_ENDPOINT = "http://localhost:4566"
TABLE_NAME = "inventory-table"

# Colors for terminal output
GREEN = "\033[0;32m"
BLUE = "\033[0;34m"
YELLOW = "\033[1;33m"
CYAN = "\033[0;36m"
RED = "\033[0;31m"
BOLD = "\033[1m"
NC = "\033[0m"  # No Color


def get_table():
    """Get the inventory table from LocalStack."""
    dynamodb = boto3.resource(
        "dynamodb",
        endpoint_url=LOCALSTACK_ENDPOINT,
        region_name="us-east-1",
        aws_access_key_id="test",
        aws_secret_access_key="test",
    )
    return dynamodb.Table(TABLE_NAME)


def fetch_rows(order_id: str = None, product_id: str = None) -> List[Dict[str, Any]]:
    """Fetch inventory rows by order, by product (via ProductIndex), or all."""
    table = get_table()
    try:
        if order_id:
            response = table.query(KeyConditionExpression=Key("OrderID").eq(order_id))
        elif product_id:
            response = table.query(
                IndexName="ProductIndex",
                KeyConditionExpression=Key("ProductID").eq(product_id),
            )
        else:
            response = table.scan()
    except ClientError as e:
        print(f"{RED}[ERROR] Error reading DynamoDB: {str(e)}{NC}")
        print(f"{YELLOW}Is LocalStack running with the stack deployed?{NC}")
        sys.exit(1)
    return response.get("Items", [])


def print_rows(rows: List[Dict[str, Any]]):
    """Print inventory rows as a table."""
    if not rows:
        print(f"{YELLOW} No inventory reservations found{NC}")
        return

    print(f"\n{BOLD}{BLUE} Inventory Reservations{NC}\n")
    print(f"{CYAN}{'─' * 100}{NC}")
    print(
        f"{BOLD}{'Order ID':<32} {'Product ID':<16} {'Qty':>5}  {'Status':<10} {'Reserved At':<25}{NC}"
    )
    print(f"{CYAN}{'─' * 100}{NC}")

    for row in sorted(rows, key=lambda r: r.get("ReservedAt", ""), reverse=True):
        print(
            f"{row['OrderID']:<32} {row['ProductID']:<16} {int(row.get('Quantity', 0)):>5}  "
            f"{GREEN}{row.get('Status', '-'):<10}{NC} {row.get('ReservedAt', '-')[:19]:<25}"
        )

    print(f"{CYAN}{'─' * 100}{NC}\n")

    orders = {row["OrderID"] for row in rows}
    units = sum(int(row.get("Quantity", 0)) for row in rows)
    print(f"{BOLD} Summary:{NC} {len(orders)} orders, {len(rows)} rows, {units} units")


def main():
    """Main entry point."""
    args = sys.argv[1:]
    if args and args[0] in ("--help", "-h"):
        print(f"{BLUE}Usage:{NC}")
        print(f"  {sys.argv[0]}                     - View all reservations")
        print(f"  {sys.argv[0]} ORDER_ID            - View one order")
        print(f"  {sys.argv[0]} --product PRODUCT   - View reservations of a product")
        return

    if len(args) == 2 and args[0] == "--product":
        print_rows(fetch_rows(product_id=args[1]))
    elif args:
        print_rows(fetch_rows(order_id=args[0]))
    else:
        print_rows(fetch_rows())


if __name__ == "__main__":
    main()

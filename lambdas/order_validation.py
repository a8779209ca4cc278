"""Order payload validation shared by the order Lambdas."""

import re
from typing import Any, Optional

# SQS FIFO MessageGroupId / MessageDeduplicationId constraints
MAX_ORDER_ID_LENGTH = 128
ORDER_ID_PATTERN = re.compile(r"[A-Za-z0-9!\"#$%&'()*+,\-./:;<=>?@\[\\\]^_`{|}~]+")


def order_id_of(body: Any) -> Optional[str]:
    """Return the orderId of a payload if it is a non-empty string."""
    if isinstance(body, dict):
        order_id = body.get("orderId")
        if order_id and isinstance(order_id, str):
            return order_id
    return None


def validate_order(body: Any) -> Optional[str]:
    """Return an error message for an invalid order payload, or None.

    The orderId doubles as the FIFO message group and deduplication ID, so it
    must satisfy the SQS constraints for those. Each productId may appear at
    most once since it is the inventory row's sort key.
    """
    if not isinstance(body, dict):
        return "Order payload must be a JSON object"

    order_id = body.get("orderId")
    if not order_id or not isinstance(order_id, str):
        return "Missing or invalid orderId (must be a non-empty string)"
    if len(order_id) > MAX_ORDER_ID_LENGTH or not ORDER_ID_PATTERN.fullmatch(order_id):
        return (
            f"Invalid orderId (at most {MAX_ORDER_ID_LENGTH} ASCII letters, "
            "digits or punctuation)"
        )

    items = body.get("items")
    if not items or not isinstance(items, list):
        return "Missing or invalid items (must be a non-empty list)"

    seen = set()
    for item in items:
        if not isinstance(item, dict):
            return "Invalid item (must be an object)"
        product_id = item.get("productId")
        if not product_id or not isinstance(product_id, str):
            return "Missing or invalid productId (must be a non-empty string)"
        if product_id in seen:
            return f"Duplicate productId {product_id} (list each product once)"
        seen.add(product_id)
        quantity = item.get("quantity")
        # bool is a subclass of int
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            return f"Missing or invalid quantity for product {product_id} (must be a positive integer)"

    return None

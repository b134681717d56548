from decimal import Decimal
from enum import Enum
from typing import Any

MIN_INT64 = -(2**63)
MAX_INT64 = 2**63 - 1


def sanitize_for_mongo(value: Any) -> Any:
    """
    Recursively sanitize values so they are acceptable by MongoDB/BSON.

    - ints wider than int64 become strings (wei amounts, uint256 values)
    - Decimals become strings
    - Enums become their value
    - dicts, lists and tuples are walked recursively
    """
    if isinstance(value, bool):
        return value

    if isinstance(value, Enum):
        return sanitize_for_mongo(value.value)

    if isinstance(value, int):
        if MIN_INT64 <= value <= MAX_INT64:
            return value
        return str(value)

    if isinstance(value, Decimal):
        return str(value)

    if isinstance(value, dict):
        return {k: sanitize_for_mongo(v) for k, v in value.items()}

    if isinstance(value, list):
        return [sanitize_for_mongo(v) for v in value]

    if isinstance(value, tuple):
        return [sanitize_for_mongo(v) for v in value]

    return value

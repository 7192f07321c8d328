import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any


def to_jsonable(value: Any) -> Any:
    """
    Convert a snapshot into values a JSON column can store.

    Whole Decimals become ints; fractional ones keep their exact digits as
    strings. NaN and infinities have no JSON form and raise ValueError.
    """
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Cannot store non-finite number {value} in a snapshot")
        return int(value) if value == value.to_integral_value() else str(value)
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"Cannot store non-finite number {value} in a snapshot")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value

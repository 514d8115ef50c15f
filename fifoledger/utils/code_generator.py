from __future__ import annotations

__all__ = [
    "generate_layer_code",
    "generate_work_order_code",
]

BASE36_CHARS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
LAYER_PREFIX = "LOT"
WORK_ORDER_PREFIX = "WO"


def int_to_base36(num: int) -> str:
    if num < 0:
        raise ValueError("base36 codes are only issued for non-negative ids")
    if num == 0:
        return "0"

    digits = []
    while num:
        num, remainder = divmod(num, 36)
        digits.append(BASE36_CHARS[remainder])

    return "".join(reversed(digits))


def _format(prefix: str, record_id: int) -> str:
    # Pad to keep codes sortable for the first 36^4 records
    return f"{prefix}-{int_to_base36(record_id).rjust(4, '0')}"


def generate_layer_code(layer_id: int) -> str:
    return _format(LAYER_PREFIX, layer_id)


def generate_work_order_code(work_order_id: int) -> str:
    return _format(WORK_ORDER_PREFIX, work_order_id)

"""Extract goods allocation requests from ``shipment_goods`` fields."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .merge import live_item_indices
from .schema import ChoiceField, GroupField, ShipmentGoodsField, StepFieldSchema
from .values import as_mapping

logger = logging.getLogger(__name__)

__all__ = ["GoodsAllocation", "parse_goods_quantity", "collect_shipment_goods_allocations"]

_GOOD_KEY_RE = re.compile(r"good-([0-9]+)")


@dataclass(frozen=True)
class GoodsAllocation:
    shipment_good_id: int
    taken_quantity: int


def parse_goods_quantity(raw: Any) -> Optional[int]:
    """Parse a free-text quantity; only non-negative whole numbers are accepted."""

    if not isinstance(raw, str):
        return None
    text = raw.strip()
    if not text or not text.isascii():
        return None
    try:
        parsed = float(text)
    except ValueError:
        return None
    if not parsed.is_integer() or parsed < 0:
        return None
    return int(parsed)


def collect_shipment_goods_allocations(
    schema: StepFieldSchema, values: Mapping[str, Any]
) -> List[GoodsAllocation]:
    """Collect every ``good-<id>`` quantity found through groups and choices.

    When the same good appears in more than one field, the value visited last
    wins.
    """

    allocations: Dict[int, int] = {}

    def walk(fields, current: Mapping[str, Any]) -> None:
        for fdef in fields:
            value = current.get(fdef.id)
            if isinstance(fdef, ShipmentGoodsField):
                for key, entry in as_mapping(value).items():
                    match = _GOOD_KEY_RE.fullmatch(str(key))
                    if not match:
                        continue
                    quantity = parse_goods_quantity(entry)
                    if quantity is None:
                        logger.debug("GOODS_QUANTITY_SKIPPED key=%s", key)
                        continue
                    allocations[int(match.group(1))] = quantity
            elif isinstance(fdef, GroupField):
                if fdef.repeatable:
                    for index in live_item_indices(value):
                        walk(fdef.fields, value[index])
                elif isinstance(value, dict):
                    walk(fdef.fields, value)
            elif isinstance(fdef, ChoiceField):
                choice_values = as_mapping(value)
                for option in fdef.options:
                    option_value = choice_values.get(option.id)
                    if isinstance(option_value, dict):
                        walk(option.fields, option_value)

    walk(schema.fields, as_mapping(values))
    return [
        GoodsAllocation(shipment_good_id=good_id, taken_quantity=quantity)
        for good_id, quantity in allocations.items()
    ]

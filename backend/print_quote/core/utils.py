# core/utils.py

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, TYPE_CHECKING

if TYPE_CHECKING:
    from .common_types import CostBreakdown

logger = logging.getLogger(__name__)

def round_half_up(value: float, places: int = 2) -> float:
    """
    Rounds a value half-up to a fixed number of decimals.

    Built-in round() rounds half to even on the binary value, which makes
    0.125 display as 0.12; quotes are expected to read 0.13.

    Args:
        value: The number to round.
        places: Number of decimal places to keep.

    Returns:
        The rounded value as a float.
    """
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))

def format_weight(weight_g: float) -> str:
    return f"{round_half_up(weight_g):.2f} g"

def format_money(amount: float, currency: str) -> str:
    return f"{round_half_up(amount):.2f} {currency}"

def format_breakdown(breakdown: "CostBreakdown", currency: str) -> Dict[str, str]:
    """
    Renders a cost breakdown as display strings using the shared rounding policy.

    Args:
        breakdown: Full-precision or already rounded breakdown.
        currency: Currency suffix (e.g. "TL").

    Returns:
        Mapping of field name to formatted string.
    """
    return {
        "weight": format_weight(breakdown.weight_g),
        "material_cost": format_money(breakdown.material_cost, currency),
        "labor_cost": format_money(breakdown.labor_cost, currency),
        "total_cost": format_money(breakdown.total_cost, currency),
    }

# Example Usage:
# round_half_up(0.125)          # 0.13
# format_money(50.673568, "TL") # "50.67 TL"

# processes/print_3d/pricing.py

import abc
import math
import logging
from typing import Mapping, Optional

from ...core.common_types import CostBreakdown, MaterialSpec, PrintProfile
from ...core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

GRAMS_PER_KG = 1000.0


class LaborCostPolicy(abc.ABC):
    """Strategy deciding the labor charge added on top of material cost."""

    name: str = "abstract"

    @abc.abstractmethod
    def labor_cost(self, profile: PrintProfile) -> float:
        pass


class FlatLaborCost(LaborCostPolicy):
    """The same charge for every job."""

    name = "flat"

    def __init__(self, amount: float):
        if amount < 0:
            raise ConfigurationError("Flat labor cost must be >= 0.")
        self.amount = float(amount)

    def labor_cost(self, profile: PrintProfile) -> float:
        return self.amount


class TieredLaborCost(LaborCostPolicy):
    """
    A fixed charge per quality tier.

    Uses the override table when given, otherwise the labor_cost carried by the
    profile itself.
    """

    name = "tiered"

    def __init__(self, table: Optional[Mapping[str, float]] = None):
        self.table = dict(table or {})

    def labor_cost(self, profile: PrintProfile) -> float:
        return float(self.table.get(profile.id, profile.labor_cost))


class DerivedLaborCost(LaborCostPolicy):
    """
    base_cost * (base_layer_height / layer_height), rounded half-up to a whole
    currency unit. Thinner layers need more passes and more machine time.
    """

    name = "derived"

    def __init__(self, base_cost: float, base_layer_height: float):
        if base_cost < 0 or base_layer_height <= 0:
            raise ConfigurationError("Derived labor cost needs base_cost >= 0 and base_layer_height > 0.")
        self.base_cost = float(base_cost)
        self.base_layer_height = float(base_layer_height)

    def labor_cost(self, profile: PrintProfile) -> float:
        raw = self.base_cost * (self.base_layer_height / profile.layer_height_mm)
        return float(math.floor(raw + 0.5))


def create_labor_policy(name: str,
                        flat_amount: float = 50.0,
                        base_cost: float = 50.0,
                        base_layer_height: float = 0.20,
                        tier_table: Optional[Mapping[str, float]] = None) -> LaborCostPolicy:
    """Factory for the configured labor policy ('flat', 'tiered' or 'derived')."""
    if name == FlatLaborCost.name:
        return FlatLaborCost(flat_amount)
    if name == TieredLaborCost.name:
        return TieredLaborCost(tier_table)
    if name == DerivedLaborCost.name:
        return DerivedLaborCost(base_cost, base_layer_height)
    raise ConfigurationError(f"Unknown labor policy '{name}'. Use flat, tiered or derived.")


class PricingEngine:
    """Converts a weight into a material + labor cost breakdown."""

    def __init__(self, labor_policy: LaborCostPolicy):
        self.labor_policy = labor_policy

    def material_cost(self, weight_g: float, material: MaterialSpec) -> float:
        return max(0.0, weight_g) * (material.price_per_kg / GRAMS_PER_KG)

    def price(self, weight_g: float, material: MaterialSpec, profile: PrintProfile) -> CostBreakdown:
        """
        Prices a print.

        Args:
            weight_g: Deposited material weight.
            material: Supplies price_per_kg.
            profile: Passed to the labor policy.

        Returns:
            CostBreakdown with total = material cost + labor cost.
        """
        if weight_g < 0:
            logger.warning(f"Negative weight {weight_g} g received; pricing as 0 g.")
            weight_g = 0.0
        material_cost = self.material_cost(weight_g, material)
        labor_cost = self.labor_policy.labor_cost(profile)
        breakdown = CostBreakdown(
            weight_g=weight_g,
            material_cost=material_cost,
            labor_cost=labor_cost,
            total_cost=material_cost + labor_cost,
        )
        logger.debug(
            f"Priced {weight_g:.3f} g of {material.id}: material {material_cost:.4f}, "
            f"labor {labor_cost:.2f} ({self.labor_policy.name}), total {breakdown.total_cost:.4f}"
        )
        return breakdown

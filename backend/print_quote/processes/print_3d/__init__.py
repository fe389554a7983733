# processes/print_3d/__init__.py

# This file makes the 'print_3d' directory a Python sub-package.

from .catalog import Catalog
from .shell_model import split_volume, average_shell_thickness, get_shell_blend
from .material_estimator import deposited_volume, estimate_weight, volume_to_weight
from .pricing import (
    LaborCostPolicy,
    FlatLaborCost,
    TieredLaborCost,
    DerivedLaborCost,
    PricingEngine,
    create_labor_policy
)
from .slicer import SlicingBackend, PrusaSlicerBackend, HttpSlicingBackend, create_slicing_backend
from .estimators import GeometricEstimator, ExternalSlicingEstimator

__all__ = [
    "Catalog",
    "split_volume",
    "average_shell_thickness",
    "get_shell_blend",
    "deposited_volume",
    "estimate_weight",
    "volume_to_weight",
    "LaborCostPolicy",
    "FlatLaborCost",
    "TieredLaborCost",
    "DerivedLaborCost",
    "PricingEngine",
    "create_labor_policy",
    "SlicingBackend",
    "PrusaSlicerBackend",
    "HttpSlicingBackend",
    "create_slicing_backend",
    "GeometricEstimator",
    "ExternalSlicingEstimator"
]

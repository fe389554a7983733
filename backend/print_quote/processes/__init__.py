# processes/__init__.py

# This file makes the 'processes' directory a Python package.

from . import print_3d
from .base_estimator import EstimationRequest, WeightEstimator
from .print_3d import GeometricEstimator, ExternalSlicingEstimator

# Define what gets imported with 'from print_quote.processes import *'
__all__ = [
    "print_3d",
    "EstimationRequest",
    "WeightEstimator",
    "GeometricEstimator",
    "ExternalSlicingEstimator",
]

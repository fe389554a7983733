# core/__init__.py

# This file makes the 'core' directory a Python package.

from . import utils
from . import common_types
from . import exceptions
from . import geometry

# Define what gets imported with 'from print_quote.core import *'
__all__ = [
    "geometry",
    "utils",
    "common_types",
    "exceptions"
]

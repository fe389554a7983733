# print_quote/__init__.py

# This file makes the 'print_quote' directory a Python package.

from . import core
from . import processes
from . import services

# Define what gets imported with 'from print_quote import *'
__all__ = [
    "core",
    "processes",
    "services"
]

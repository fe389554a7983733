# services/__init__.py

from .quote_service import (
    QuoteInputs,
    QuoteService,
    QuoteSession,
    compute_quote,
    build_estimator,
    build_pricing_engine
)

__all__ = [
    "QuoteInputs",
    "QuoteService",
    "QuoteSession",
    "compute_quote",
    "build_estimator",
    "build_pricing_engine"
]

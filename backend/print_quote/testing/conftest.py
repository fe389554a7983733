# testing/conftest.py

import asyncio
import logging
from pathlib import Path

import pytest

from print_quote.config import Settings
from print_quote.core.common_types import SlicingResponse, SlicingSettings
from print_quote.core.exceptions import SlicerError
from print_quote.core.geometry import Mesh
from print_quote.processes.print_3d.catalog import Catalog
from print_quote.processes.print_3d.estimators import GeometricEstimator
from print_quote.processes.print_3d.pricing import FlatLaborCost, PricingEngine
from print_quote.processes.print_3d.slicer import SlicingBackend
from print_quote.services.quote_service import QuoteService
from print_quote.testing import generate_test_models as models

logger = logging.getLogger(__name__)
BENCHMARK_DIR = Path(__file__).parent / "benchmark_models"


# --- Fake slicing backends ---

class RecordingBackend(SlicingBackend):
    """Returns a fixed response and remembers what it was asked to slice."""

    name = "recording"

    def __init__(self, response: SlicingResponse, delay_sec: float = 0.0):
        self.response = response
        self.delay_sec = delay_sec
        self.calls = []

    async def slice(self, mesh_bytes: bytes, settings: SlicingSettings) -> SlicingResponse:
        self.calls.append((mesh_bytes, settings))
        if self.delay_sec:
            await asyncio.sleep(self.delay_sec)
        return self.response


class FailingBackend(SlicingBackend):
    name = "failing"

    def __init__(self, error: Exception = None):
        self.error = error or SlicerError("slicer crashed")
        self.calls = 0

    async def slice(self, mesh_bytes: bytes, settings: SlicingSettings) -> SlicingResponse:
        self.calls += 1
        raise self.error


# --- Fixtures ---

@pytest.fixture(scope="session")
def catalog() -> Catalog:
    return Catalog()

@pytest.fixture(scope="session")
def pla(catalog):
    return catalog.get_material("PLA")

@pytest.fixture(scope="session")
def standard_profile(catalog):
    return catalog.get_profile("standard")

@pytest.fixture(scope="session")
def cube_mesh() -> Mesh:
    """10 mm hand-built cube: volume 1000 mm³, area 600 mm²."""
    return models.create_cube_mesh(10.0)

@pytest.fixture(scope="session")
def thin_plate_mesh() -> Mesh:
    return Mesh.from_trimesh(models.create_thin_plate(50.0, 1.0))

@pytest.fixture(scope="session")
def flat_mesh() -> Mesh:
    return models.create_flat_square_mesh(10.0)

@pytest.fixture(scope="session")
def cube_stl_bytes() -> bytes:
    return models.to_stl_bytes(models.create_simple_cube(10.0))

@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Defaults only, independent of the environment the tests run in."""
    return Settings.model_construct()

@pytest.fixture(scope="session")
def geometric_estimator() -> GeometricEstimator:
    return GeometricEstimator()

@pytest.fixture(scope="session")
def flat_pricing() -> PricingEngine:
    return PricingEngine(FlatLaborCost(50.0))

@pytest.fixture(scope="session")
def quote_service(catalog, geometric_estimator, flat_pricing, test_settings) -> QuoteService:
    return QuoteService(catalog=catalog, estimator=geometric_estimator, pricing=flat_pricing, cfg=test_settings)

@pytest.fixture
def failing_backend() -> FailingBackend:
    return FailingBackend()

@pytest.fixture
def make_failing_backend():
    return FailingBackend

@pytest.fixture
def make_recording_backend():
    def _make(response: SlicingResponse, delay_sec: float = 0.0) -> RecordingBackend:
        return RecordingBackend(response, delay_sec=delay_sec)
    return _make

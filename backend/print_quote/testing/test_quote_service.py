# testing/test_quote_service.py

import asyncio
import logging

import pytest

from print_quote.config import Settings
from print_quote.core.common_types import EstimateSource, QuoteStatus, SlicingResponse
from print_quote.core.exceptions import FileFormatError, MaterialNotFoundError, ProfileNotFoundError
from print_quote.core.geometry import Mesh
from print_quote.processes.base_estimator import WeightEstimator
from print_quote.processes.print_3d.estimators import ExternalSlicingEstimator, GeometricEstimator
from print_quote.processes.print_3d.pricing import DerivedLaborCost, PricingEngine, TieredLaborCost
from print_quote.testing import generate_test_models as models
from print_quote.services.quote_service import (
    QuoteInputs, QuoteService, QuoteSession, build_estimator, build_pricing_engine, compute_quote
)


class DelayedEstimator(WeightEstimator):
    """Geometric estimator that stalls for selected infill values."""

    def __init__(self, delays=None, fail_at=None):
        self.inner = GeometricEstimator()
        self.delays = delays or {}
        self.fail_at = fail_at
        self.cancelled = []

    async def estimate(self, request):
        percent = round(request.infill_fraction * 100)
        if percent == self.fail_at:
            raise RuntimeError("estimator exploded")
        try:
            await asyncio.sleep(self.delays.get(percent, 0.0))
        except asyncio.CancelledError:
            self.cancelled.append(percent)
            raise
        return await self.inner.estimate(request)


def _inputs(mesh, material_id="PLA", profile_id="standard", infill_percent=20) -> QuoteInputs:
    return QuoteInputs(mesh=mesh, material_id=material_id, profile_id=profile_id, infill_percent=infill_percent)

def _quote(service: QuoteService, inputs: QuoteInputs, generation: int = 0):
    return asyncio.run(service.quote(inputs, generation=generation))

# --- compute_quote ---

def test_cube_quote(quote_service: QuoteService, cube_mesh):
    """10 mm PLA cube, standard profile, 20 % infill, flat labor 50."""
    result = _quote(quote_service, _inputs(cube_mesh))
    assert result.status == QuoteStatus.OK
    assert result.estimate_source == EstimateSource.GEOMETRIC
    assert result.mesh_metrics.volume_mm3 == pytest.approx(1000.0)
    assert result.volume_split.shell_volume_mm3 == pytest.approx(720.0)
    assert result.volume_split.interior_volume_mm3 == pytest.approx(280.0)

    breakdown = result.breakdown
    assert breakdown.weight_g == pytest.approx(0.96224)
    assert breakdown.material_cost == pytest.approx(0.673568)
    assert breakdown.labor_cost == 50.0
    assert breakdown.total_cost == pytest.approx(50.673568)

    display = result.display
    assert (display.weight_g, display.material_cost, display.labor_cost, display.total_cost) == (0.96, 0.67, 50.0, 50.67)
    assert result.error_message is None

def test_generation_is_echoed(quote_service: QuoteService, cube_mesh):
    assert _quote(quote_service, _inputs(cube_mesh), generation=7).generation == 7

def test_quote_is_deterministic(quote_service: QuoteService, cube_mesh):
    first = _quote(quote_service, _inputs(cube_mesh, infill_percent=35))
    second = _quote(quote_service, _inputs(cube_mesh.translated((40.0, 40.0, 0.0)), infill_percent=35))
    assert first.breakdown == second.breakdown

def test_fallback_quote_equals_geometric_quote(catalog, flat_pricing, geometric_estimator, failing_backend, cube_mesh):
    slicing = ExternalSlicingEstimator(failing_backend, fallback=geometric_estimator)
    inputs = _inputs(cube_mesh, material_id="PETG", profile_id="dynamic", infill_percent=15)
    with_fallback = asyncio.run(compute_quote(inputs, catalog, slicing, flat_pricing))
    geometric = asyncio.run(compute_quote(inputs, catalog, geometric_estimator, flat_pricing))
    assert with_fallback.status == QuoteStatus.OK
    assert with_fallback.estimate_source == EstimateSource.GEOMETRIC
    assert with_fallback.breakdown == geometric.breakdown

def test_slicer_weight_is_priced(catalog, flat_pricing, make_recording_backend, cube_mesh):
    estimator = ExternalSlicingEstimator(make_recording_backend(SlicingResponse(filament_weight_g=1.1)))
    result = asyncio.run(compute_quote(_inputs(cube_mesh), catalog, estimator, flat_pricing))
    assert result.estimate_source == EstimateSource.SLICER
    assert result.breakdown.material_cost == pytest.approx(0.77)
    assert result.volume_split is None

@pytest.mark.parametrize("pricing, expected_labor", [
    (PricingEngine(TieredLaborCost()), 80.0),
    (PricingEngine(DerivedLaborCost(50.0, 0.20)), 83.0),
])
def test_labor_policy_is_swappable(catalog, geometric_estimator, cube_mesh, pricing, expected_labor):
    inputs = _inputs(cube_mesh, profile_id="super")
    result = asyncio.run(compute_quote(inputs, catalog, geometric_estimator, pricing))
    assert result.breakdown.labor_cost == expected_labor
    assert result.breakdown.total_cost == pytest.approx(result.breakdown.material_cost + expected_labor)

# --- Placeholder & failure results ---

@pytest.mark.parametrize("make_mesh", [models.create_flat_square_mesh, Mesh.empty], ids=["flat", "empty"])
def test_invalid_mesh_placeholder(quote_service: QuoteService, make_mesh):
    result = _quote(quote_service, _inputs(make_mesh()))
    assert result.status == QuoteStatus.INVALID_MESH
    assert result.breakdown.weight_g == 0.0
    assert result.breakdown.material_cost == 0.0
    assert result.breakdown.total_cost == 50.0
    assert result.display.total_cost == 50.0
    assert result.error_message

def test_off_origin_flat_mesh_is_placeholder(catalog, flat_pricing, geometric_estimator):
    mesh = models.create_flat_square_mesh(10.0).translated((3.3, 7.1, 5.7))
    result = asyncio.run(compute_quote(_inputs(mesh), catalog, geometric_estimator, flat_pricing))
    assert result.status == QuoteStatus.INVALID_MESH
    assert result.breakdown.weight_g == 0.0
    assert result.breakdown.material_cost == 0.0
    assert result.breakdown.total_cost == 50.0

def test_unknown_material_fails_only_this_quote(quote_service: QuoteService, cube_mesh):
    result = _quote(quote_service, _inputs(cube_mesh, material_id="NYLON"))
    assert result.status == QuoteStatus.FAILED
    assert result.breakdown is None
    assert "NYLON" in result.error_message
    assert _quote(quote_service, _inputs(cube_mesh)).status == QuoteStatus.OK

def test_missing_mesh_fails(quote_service: QuoteService):
    result = _quote(quote_service, _inputs(None))
    assert result.status == QuoteStatus.FAILED
    assert "No mesh" in result.error_message

def test_out_of_range_infill_fails(quote_service: QuoteService, cube_mesh):
    result = _quote(quote_service, _inputs(cube_mesh, infill_percent=150))
    assert result.status == QuoteStatus.FAILED
    assert result.infill_percent == 150

def test_estimator_crash_becomes_failed_result(catalog, flat_pricing, cube_mesh):
    result = asyncio.run(compute_quote(_inputs(cube_mesh, infill_percent=99), catalog,
                                       DelayedEstimator(fail_at=99), flat_pricing))
    assert result.status == QuoteStatus.FAILED
    assert "RuntimeError" in result.error_message

# --- QuoteService entry points ---

def test_quote_sync(quote_service: QuoteService, cube_mesh):
    assert quote_service.quote_sync(_inputs(cube_mesh)).display.total_cost == 50.67

def test_quote_file(quote_service: QuoteService, tmp_path, cube_stl_bytes):
    path = tmp_path / "cube.stl"
    path.write_bytes(cube_stl_bytes)
    result = quote_service.quote_file(str(path))
    assert result.status == QuoteStatus.OK
    assert (result.material_id, result.profile_id, result.infill_percent) == ("PLA", "standard", 20)
    assert result.display.weight_g == 0.96

def test_quote_file_with_overrides(quote_service: QuoteService, tmp_path, cube_stl_bytes):
    path = tmp_path / "cube.stl"
    path.write_bytes(cube_stl_bytes)
    result = quote_service.quote_file(str(path), material_id="ABS", infill_percent=0)
    assert result.material_id == "ABS"
    # shell only: 720 mm³ of ABS
    assert result.breakdown.weight_g == pytest.approx(0.72 * 1.04)

def test_quote_file_missing(quote_service: QuoteService, tmp_path):
    with pytest.raises(FileNotFoundError):
        quote_service.quote_file(str(tmp_path / "missing.stl"))

def test_default_wiring():
    service = QuoteService(cfg=Settings.model_construct())
    assert isinstance(service.estimator, GeometricEstimator)
    assert service.pricing.labor_policy.name == "flat"

def test_build_estimator_with_slicing():
    cfg = Settings.model_construct(slicing_enabled=True, slicing_backend="http",
                                   slicing_service_url="http://slicer.test/slice", slicer_timeout_sec=5.0)
    estimator = build_estimator(cfg)
    assert isinstance(estimator, ExternalSlicingEstimator)
    assert estimator.timeout_sec == 5.0
    assert estimator.backend.url == "http://slicer.test/slice"

def test_build_estimator_without_service_url():
    cfg = Settings.model_construct(slicing_enabled=True, slicing_backend="http")
    assert isinstance(build_estimator(cfg), GeometricEstimator)

def test_build_pricing_engine():
    engine = build_pricing_engine(Settings.model_construct(labor_policy="derived", derived_labor_base_cost=60.0))
    assert isinstance(engine.labor_policy, DerivedLaborCost)
    assert engine.labor_policy.base_cost == 60.0

# --- QuoteSession ---

def _session(service, test_settings, debounce_ms=20):
    results = []
    session = QuoteSession(service=service, debounce_ms=debounce_ms, on_result=results.append, cfg=test_settings)
    return session, results

def test_burst_of_changes_computes_once(quote_service, test_settings, cube_stl_bytes):
    async def scenario():
        session, results = _session(quote_service, test_settings, debounce_ms=50)
        session.load_mesh_bytes(cube_stl_bytes, "cube.stl")
        for percent in (30, 40, 50):
            session.set_infill_percent(percent)
        await session.wait_idle()
        return session, results

    session, results = asyncio.run(scenario())
    assert len(results) == 1
    assert results[0].infill_percent == 50
    assert results[0].generation == session.generation
    assert session.latest_result is results[0]

def test_stale_result_is_discarded(catalog, flat_pricing, test_settings, cube_stl_bytes):
    """A slow computation for old inputs never overwrites the newer result."""
    service = QuoteService(catalog=catalog, estimator=DelayedEstimator(delays={20: 0.3}),
                           pricing=flat_pricing, cfg=test_settings)

    async def scenario():
        session, results = _session(service, test_settings, debounce_ms=10)
        session.load_mesh_bytes(cube_stl_bytes, "cube.stl")
        await asyncio.sleep(0.05)  # first computation is now in flight
        session.set_infill_percent(60)
        await session.wait_idle()
        return session, results

    session, results = asyncio.run(scenario())
    assert [r.infill_percent for r in results] == [60]
    assert session.latest_result.infill_percent == 60

def test_superseded_computation_is_cancelled(catalog, flat_pricing, test_settings, cube_stl_bytes):
    estimator = DelayedEstimator(delays={20: 5.0})
    service = QuoteService(catalog=catalog, estimator=estimator, pricing=flat_pricing, cfg=test_settings)

    async def scenario():
        session, results = _session(service, test_settings, debounce_ms=10)
        session.load_mesh_bytes(cube_stl_bytes, "cube.stl")
        await asyncio.sleep(0.05)
        session.set_infill_percent(60)
        await asyncio.wait_for(session.wait_idle(), 2.0)
        return results

    results = asyncio.run(scenario())
    assert estimator.cancelled == [20]
    assert [r.infill_percent for r in results] == [60]

def test_failing_callback_is_logged(quote_service, test_settings, cube_stl_bytes, caplog):
    def explode(result):
        raise RuntimeError("display went away")

    async def scenario():
        session = QuoteSession(service=quote_service, debounce_ms=10, on_result=explode, cfg=test_settings)
        session.load_mesh_bytes(cube_stl_bytes, "cube.stl")
        await session.wait_idle()
        return session

    with caplog.at_level(logging.ERROR, logger="print_quote.services.quote_service"):
        session = asyncio.run(scenario())
    assert session.latest_result.status == QuoteStatus.OK
    assert "on_result callback failed" in caplog.text
    assert "display went away" in caplog.text

def test_failure_keeps_last_successful_result(catalog, flat_pricing, test_settings, cube_stl_bytes):
    service = QuoteService(catalog=catalog, estimator=DelayedEstimator(fail_at=99),
                           pricing=flat_pricing, cfg=test_settings)

    async def scenario():
        session, results = _session(service, test_settings)
        session.load_mesh_bytes(cube_stl_bytes, "cube.stl")
        await session.wait_idle()
        session.set_infill_percent(99)
        await session.wait_idle()
        return session, results

    session, results = asyncio.run(scenario())
    assert [r.status for r in results] == [QuoteStatus.OK, QuoteStatus.FAILED]
    assert session.latest_result.status == QuoteStatus.FAILED
    assert session.last_successful_result.infill_percent == 20

def test_loaded_mesh_is_centered(quote_service, test_settings, cube_mesh):
    async def scenario():
        session, _ = _session(quote_service, test_settings)
        session.load_mesh_bytes(cube_mesh.translated((100.0, 0.0, 0.0)).to_stl_bytes(), "offset.stl")
        session.close()
        return session

    lo, hi = asyncio.run(scenario()).inputs.mesh.bounds()
    assert list(lo + hi) == pytest.approx([0.0, 0.0, 0.0])

def test_recompute_now_skips_debounce(quote_service, test_settings, cube_stl_bytes):
    async def scenario():
        session, results = _session(quote_service, test_settings, debounce_ms=10_000)
        session.load_mesh_bytes(cube_stl_bytes, "cube.stl")
        result = await session.recompute_now()
        await session.wait_idle()
        return result, results

    result, results = asyncio.run(scenario())
    assert result.status == QuoteStatus.OK
    assert results == [result]

def test_nothing_computed_without_mesh(quote_service, test_settings):
    async def scenario():
        session, results = _session(quote_service, test_settings)
        session.set_material("ABS")
        session.set_profile("super")
        await session.wait_idle()
        return session, results, await session.recompute_now()

    session, results, result = asyncio.run(scenario())
    assert results == []
    assert result is None
    assert (session.inputs.material_id, session.inputs.profile_id) == ("ABS", "super")

def test_zero_triangle_upload_gives_placeholder(quote_service, test_settings):
    async def scenario():
        session, results = _session(quote_service, test_settings)
        session.load_mesh_bytes(b"\0" * 80 + b"\0\0\0\0", "empty.stl")
        await session.wait_idle()
        return results

    results = asyncio.run(scenario())
    assert results[0].status == QuoteStatus.INVALID_MESH
    assert results[0].display.total_cost == 50.0

def test_session_input_validation(quote_service, test_settings):
    session, _ = _session(quote_service, test_settings)
    with pytest.raises(ValueError):
        session.set_infill_percent(101)
    with pytest.raises(MaterialNotFoundError):
        session.set_material("WOOD")
    with pytest.raises(ProfileNotFoundError):
        session.set_profile("ultra")
    with pytest.raises(FileFormatError):
        session.load_mesh_bytes(b"", "nothing.stl")
    assert session.inputs.mesh is None
    assert session.generation == 0

def test_format_display(quote_service, cube_mesh):
    result = _quote(quote_service, _inputs(cube_mesh))
    assert quote_service.format_display(result) == {
        "weight": "0.96 g",
        "material_cost": "0.67 TL",
        "labor_cost": "50.00 TL",
        "total_cost": "50.67 TL",
    }
    assert quote_service.format_display(_quote(quote_service, _inputs(None))) == {}

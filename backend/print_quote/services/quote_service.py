# services/quote_service.py

import os
import time
import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional

from ..config import Settings, settings as default_settings
from ..core import geometry, utils
from ..core.common_types import MaterialSpec, PrintProfile, QuoteResult, QuoteStatus
from ..core.exceptions import ConfigurationError, InvalidMeshError, QuoteGenerationError
from ..core.geometry import Mesh
from ..processes.base_estimator import EstimationRequest, WeightEstimator
from ..processes.print_3d.catalog import Catalog
from ..processes.print_3d.estimators import ExternalSlicingEstimator, GeometricEstimator
from ..processes.print_3d.pricing import PricingEngine, create_labor_policy
from ..processes.print_3d.shell_model import get_shell_blend
from ..processes.print_3d.slicer import create_slicing_backend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuoteInputs:
    """Immutable snapshot of everything one quote computation reads."""
    mesh: Optional[Mesh]
    material_id: str
    profile_id: str
    infill_percent: int
    mesh_bytes: Optional[bytes] = None
    file_name: str = "model.stl"


# --- Wiring ---

def build_estimator(cfg: Settings = default_settings) -> WeightEstimator:
    """Geometric estimator, wrapped by the slicing adapter when slicing is enabled."""
    geometric = GeometricEstimator(shell_blend=get_shell_blend(cfg.shell_blend))
    if not cfg.slicing_enabled:
        return geometric
    try:
        backend = create_slicing_backend(
            cfg.slicing_backend,
            slicer_path=cfg.slicer_path,
            service_url=cfg.slicing_service_url,
            timeout=cfg.slicer_timeout_sec,
        )
    except ConfigurationError as e:
        logger.warning(f"Slicing disabled, backend could not be configured: {e}")
        return geometric
    return ExternalSlicingEstimator(backend, fallback=geometric, timeout_sec=cfg.slicer_timeout_sec)


def build_pricing_engine(cfg: Settings = default_settings) -> PricingEngine:
    policy = create_labor_policy(
        cfg.labor_policy,
        flat_amount=cfg.flat_labor_cost,
        base_cost=cfg.derived_labor_base_cost,
        base_layer_height=cfg.derived_labor_base_layer_height,
    )
    return PricingEngine(policy)


# --- Pure recompute ---

async def compute_quote(inputs: QuoteInputs,
                        catalog: Catalog,
                        estimator: WeightEstimator,
                        pricing: PricingEngine,
                        generation: int = 0) -> QuoteResult:
    """
    Computes a full quote for one input snapshot. Never raises.

    Zero-triangle and zero-volume meshes produce an INVALID_MESH placeholder
    (zero weight, labor-only total). Any other error produces a FAILED result
    carrying the error message.

    Args:
        inputs: Mesh and settings snapshot.
        catalog: Material and profile tables.
        estimator: Geometric or slicing-backed weight estimator.
        pricing: Pricing engine with the configured labor policy.
        generation: Tag copied into the result so coordinators can drop stale ones.

    Returns:
        A QuoteResult.
    """
    start_time = time.time()
    common = dict(
        generation=generation,
        material_id=inputs.material_id,
        profile_id=inputs.profile_id,
        infill_percent=inputs.infill_percent,
    )
    material: Optional[MaterialSpec] = None
    profile: Optional[PrintProfile] = None
    metrics = None

    try:
        if not 0 <= inputs.infill_percent <= 100:
            raise ValueError(f"Infill must be within 0..100 %, got {inputs.infill_percent}")
        if inputs.mesh is None:
            raise QuoteGenerationError("No mesh loaded.")
        material = catalog.get_material(inputs.material_id)
        profile = catalog.get_profile(inputs.profile_id)

        metrics = geometry.get_mesh_metrics(inputs.mesh)
        if metrics.triangle_count == 0:
            raise InvalidMeshError("Mesh has no triangles.")
        if metrics.volume_mm3 == 0.0:
            raise InvalidMeshError("Mesh encloses zero volume.")

        request = EstimationRequest(
            mesh=inputs.mesh,
            material=material,
            profile=profile,
            infill_fraction=inputs.infill_percent / 100.0,
            metrics=metrics,
            mesh_bytes=inputs.mesh_bytes,
        )
        estimate = await estimator.estimate(request)
        breakdown = pricing.price(estimate.weight_g, material, profile)
        result = QuoteResult(
            status=QuoteStatus.OK,
            breakdown=breakdown,
            display=breakdown.rounded(),
            estimate_source=estimate.source,
            mesh_metrics=metrics,
            volume_split=estimate.volume_split,
            processing_time_sec=time.time() - start_time,
            **common,
        )
        logger.info(
            f"Quote #{generation} for {inputs.file_name}: {result.display.weight_g:.2f} g {material.id}, "
            f"total {result.display.total_cost:.2f} ({estimate.source.value})"
        )
        return result

    except InvalidMeshError as e:
        logger.warning(f"Quote #{generation} for {inputs.file_name}: invalid mesh ({e}); returning placeholder.")
        placeholder = pricing.price(0.0, material, profile)
        return QuoteResult(
            status=QuoteStatus.INVALID_MESH,
            breakdown=placeholder,
            display=placeholder.rounded(),
            mesh_metrics=metrics,
            error_message=str(e),
            processing_time_sec=time.time() - start_time,
            **common,
        )
    except Exception as e:
        logger.exception(f"Quote #{generation} for {inputs.file_name} failed:")
        return QuoteResult(
            status=QuoteStatus.FAILED,
            mesh_metrics=metrics,
            error_message=f"{type(e).__name__}: {e}",
            processing_time_sec=time.time() - start_time,
            **common,
        )


class QuoteService:
    """Service layer binding the catalog, estimator and pricing strategy together."""

    def __init__(self,
                 catalog: Optional[Catalog] = None,
                 estimator: Optional[WeightEstimator] = None,
                 pricing: Optional[PricingEngine] = None,
                 cfg: Settings = default_settings):
        self.cfg = cfg
        self.catalog = catalog or Catalog()
        self.estimator = estimator or build_estimator(cfg)
        self.pricing = pricing or build_pricing_engine(cfg)
        logger.info(f"QuoteService initialized with {type(self.estimator).__name__}, "
                    f"labor policy '{self.pricing.labor_policy.name}'.")

    async def quote(self, inputs: QuoteInputs, generation: int = 0) -> QuoteResult:
        return await compute_quote(inputs, self.catalog, self.estimator, self.pricing, generation)

    def format_display(self, result: QuoteResult) -> Dict[str, str]:
        """Display strings for a result ("0.96 g", "50.67 TL", ...); empty for FAILED results."""
        if result.display is None:
            return {}
        return utils.format_breakdown(result.display, self.cfg.currency)

    def quote_sync(self, inputs: QuoteInputs) -> QuoteResult:
        """Blocking variant for callers without a running event loop."""
        return asyncio.run(self.quote(inputs))

    def quote_file(self, file_path: str,
                   material_id: Optional[str] = None,
                   profile_id: Optional[str] = None,
                   infill_percent: Optional[int] = None) -> QuoteResult:
        """
        Loads an STL file and quotes it with the given (or default) settings.

        Raises:
            FileNotFoundError, FileFormatError: If the file cannot be read as STL.
        """
        try:
            mesh = geometry.load_mesh(file_path)
        except InvalidMeshError:
            mesh = Mesh.empty()
        with open(file_path, "rb") as f:
            data = f.read()
        inputs = QuoteInputs(
            mesh=mesh,
            material_id=material_id or self.cfg.default_material,
            profile_id=profile_id or self.cfg.default_profile,
            infill_percent=self.cfg.default_infill_percent if infill_percent is None else infill_percent,
            mesh_bytes=data,
            file_name=os.path.basename(file_path),
        )
        return self.quote_sync(inputs)


class QuoteSession:
    """
    Coordinates recomputation for one interactive user.

    Holds the current input snapshot and the latest accepted result. Every
    input change replaces the snapshot and (re)starts a debounce timer; after
    the quiet period a single computation runs. Each change bumps a generation
    counter. Computations for older generations are cancelled, and any that
    still finish are discarded, so a slow slicing answer can never overwrite
    the result for newer inputs.

    All mutating methods must be called from the event loop thread.
    """

    def __init__(self,
                 service: Optional[QuoteService] = None,
                 debounce_ms: Optional[int] = None,
                 on_result: Optional[Callable[[QuoteResult], None]] = None,
                 cfg: Settings = default_settings):
        self.service = service or QuoteService(cfg=cfg)
        self.debounce_sec = (cfg.debounce_ms if debounce_ms is None else debounce_ms) / 1000.0
        self.on_result = on_result
        self._inputs = QuoteInputs(
            mesh=None,
            material_id=cfg.default_material,
            profile_id=cfg.default_profile,
            infill_percent=cfg.default_infill_percent,
        )
        self._generation = 0
        self._debounce_task: Optional[asyncio.Task] = None
        self._inflight: Dict[asyncio.Task, int] = {}
        self.latest_result: Optional[QuoteResult] = None
        self.last_successful_result: Optional[QuoteResult] = None

    @property
    def inputs(self) -> QuoteInputs:
        return self._inputs

    @property
    def generation(self) -> int:
        return self._generation

    # --- Input changes ---

    def load_mesh_bytes(self, data: bytes, file_name: str = "model.stl") -> None:
        """
        Parses a newly loaded file and schedules a recompute.

        A mesh that cannot form valid geometry becomes an empty mesh so the
        next result is the placeholder. Unreadable bytes raise and leave the
        current snapshot untouched.

        Raises:
            FileFormatError: If the bytes are not a readable STL.
        """
        try:
            mesh = geometry.load_mesh_from_bytes(data, file_name=file_name).centered()
        except InvalidMeshError as e:
            logger.warning(f"'{file_name}' is not a valid mesh: {e}")
            mesh = Mesh.empty()
        self._replace(mesh=mesh, mesh_bytes=data, file_name=file_name)

    def set_material(self, material_id: str) -> None:
        self.service.catalog.get_material(material_id)
        self._replace(material_id=material_id)

    def set_profile(self, profile_id: str) -> None:
        self.service.catalog.get_profile(profile_id)
        self._replace(profile_id=profile_id)

    def set_infill_percent(self, infill_percent: int) -> None:
        if not 0 <= infill_percent <= 100:
            raise ValueError(f"Infill must be within 0..100 %, got {infill_percent}")
        self._replace(infill_percent=int(infill_percent))

    def _replace(self, **changes) -> None:
        self._inputs = replace(self._inputs, **changes)
        self._generation += 1
        self._schedule()

    # --- Scheduling ---

    def _schedule(self) -> None:
        self._cancel_stale()
        if self._inputs.mesh is None:
            logger.debug("No mesh loaded yet; nothing to recompute.")
            return
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounced())

    async def _debounced(self) -> None:
        await asyncio.sleep(self.debounce_sec)
        generation = self._generation
        task = asyncio.get_running_loop().create_task(self._run(self._inputs, generation))
        self._inflight[task] = generation
        task.add_done_callback(lambda t: self._inflight.pop(t, None))

    def _cancel_stale(self) -> None:
        for task, generation in list(self._inflight.items()):
            if generation != self._generation and not task.done():
                logger.debug(f"Cancelling superseded computation of generation {generation}.")
                task.cancel()

    async def _run(self, inputs: QuoteInputs, generation: int) -> Optional[QuoteResult]:
        result = await self.service.quote(inputs, generation=generation)
        if generation != self._generation:
            logger.info(f"Discarding stale result of generation {generation} (current {self._generation}).")
            return None
        self.latest_result = result
        if result.status != QuoteStatus.FAILED:
            self.last_successful_result = result
        if self.on_result is not None:
            try:
                self.on_result(result)
            except Exception:
                logger.exception(f"on_result callback failed for generation {generation}.")
        return result

    async def recompute_now(self) -> Optional[QuoteResult]:
        """Skips the debounce and computes the current snapshot immediately."""
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        if self._inputs.mesh is None:
            return None
        self._generation += 1
        self._cancel_stale()
        return await self._run(self._inputs, self._generation)

    async def wait_idle(self) -> None:
        """Waits until no timer is pending and no computation is in flight."""
        while True:
            pending = [t for t in [self._debounce_task, *list(self._inflight)] if t is not None and not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def close(self) -> None:
        for task in [self._debounce_task, *list(self._inflight)]:
            if task is not None and not task.done():
                task.cancel()

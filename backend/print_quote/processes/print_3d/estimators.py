# processes/print_3d/estimators.py

import time
import asyncio
import logging
from typing import Optional

from ...core.common_types import EstimateSource, SlicingSettings, SlicingState, WeightEstimate
from ...core.exceptions import SlicerError, SlicerTimeoutError
from ..base_estimator import EstimationRequest, WeightEstimator
from . import material_estimator
from .shell_model import ShellBlend, average_shell_thickness, split_volume
from .slicer import SlicingBackend

logger = logging.getLogger(__name__)


class GeometricEstimator(WeightEstimator):
    """
    Mesh metrics -> shell/interior split -> deposited volume -> weight.

    Pure and synchronous; estimate() only wraps estimate_sync() to satisfy the
    shared interface.
    """

    def __init__(self, shell_blend: ShellBlend = average_shell_thickness):
        self.shell_blend = shell_blend

    def estimate_sync(self, request: EstimationRequest) -> WeightEstimate:
        metrics = request.resolved_metrics()
        split = split_volume(metrics.volume_mm3, metrics.surface_area_mm2, request.profile, self.shell_blend)
        if split.total_volume_mm3 == 0.0:
            logger.warning("Mesh encloses no volume; reporting zero weight.")
            return WeightEstimate(weight_g=0.0, source=EstimateSource.GEOMETRIC,
                                  volume_split=split, material_volume_mm3=0.0)

        deposited = material_estimator.deposited_volume(split, request.infill_fraction)
        weight = material_estimator.volume_to_weight(deposited, request.material.density_g_cm3)
        logger.info(f"Geometric estimate: {deposited:.2f} mm³ deposited, {weight:.3f} g of {request.material.id}")
        return WeightEstimate(weight_g=weight, source=EstimateSource.GEOMETRIC,
                              volume_split=split, material_volume_mm3=deposited)

    async def estimate(self, request: EstimationRequest) -> WeightEstimate:
        return self.estimate_sync(request)


class ExternalSlicingEstimator(WeightEstimator):
    """
    Asks a slicing backend for the weight and falls back to the geometric path.

    One attempt per call, bounded by timeout_sec. Any failure of the attempt
    (error, timeout, malformed metadata) is logged and answered by the fallback
    estimator with the same request; it is never raised to the caller.
    """

    def __init__(self, backend: SlicingBackend,
                 fallback: Optional[GeometricEstimator] = None,
                 timeout_sec: float = 60.0):
        self.backend = backend
        self.fallback = fallback or GeometricEstimator()
        self.timeout_sec = timeout_sec

    async def _slice_once(self, request: EstimationRequest) -> float:
        settings = SlicingSettings.from_inputs(request.profile, request.material, request.infill_fraction)
        mesh_bytes = request.resolved_bytes()
        try:
            response = await asyncio.wait_for(self.backend.slice(mesh_bytes, settings), timeout=self.timeout_sec)
        except asyncio.TimeoutError as e:
            raise SlicerTimeoutError(f"Slicer did not answer within {self.timeout_sec}s.") from e
        return response.to_weight_g(request.material.density_g_cm3)

    async def estimate(self, request: EstimationRequest) -> WeightEstimate:
        material_estimator.validate_infill_fraction(request.infill_fraction)
        if request.mesh.is_empty:
            logger.info("Empty mesh; skipping slicer.")
            return await self.fallback.estimate(request)

        state = SlicingState.SLICING
        start = time.time()
        logger.info(f"Slicing with '{self.backend.name}' backend (timeout {self.timeout_sec}s)...")
        try:
            weight = await self._slice_once(request)
            state = SlicingState.SUCCESS
        except Exception as e:
            state = SlicingState.FAILED
            reason = str(e) if isinstance(e, SlicerError) else f"{type(e).__name__}: {e}"
            logger.warning(f"Slicing failed after {time.time() - start:.2f}s ({reason}); using geometric estimate.")
            estimate = await self.fallback.estimate(request)
            return estimate.model_copy(update={"slicing_state": state})

        logger.info(f"Slicer estimate: {weight:.3f} g in {time.time() - start:.2f}s")
        return WeightEstimate(weight_g=weight, source=EstimateSource.SLICER, slicing_state=state)

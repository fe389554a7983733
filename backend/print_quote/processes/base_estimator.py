# processes/base_estimator.py

import abc
import logging
from dataclasses import dataclass
from typing import Optional

from ..core.common_types import MaterialSpec, MeshMetrics, PrintProfile, WeightEstimate
from ..core.geometry import Mesh, get_mesh_metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EstimationRequest:
    """
    Everything a weight estimator may need for one computation.

    metrics may be supplied when the caller already measured the mesh;
    mesh_bytes may be supplied when the original file is at hand so that a
    slicer gets the exact uploaded geometry.
    """
    mesh: Mesh
    material: MaterialSpec
    profile: PrintProfile
    infill_fraction: float
    metrics: Optional[MeshMetrics] = None
    mesh_bytes: Optional[bytes] = None

    def resolved_metrics(self) -> MeshMetrics:
        return self.metrics if self.metrics is not None else get_mesh_metrics(self.mesh)

    def resolved_bytes(self) -> bytes:
        return self.mesh_bytes if self.mesh_bytes is not None else self.mesh.to_stl_bytes()


class WeightEstimator(abc.ABC):
    """
    Common interface for everything that turns a mesh and print settings into
    a deposited-material weight. Callers never need to know which path answered.
    """

    @abc.abstractmethod
    async def estimate(self, request: EstimationRequest) -> WeightEstimate:
        """
        Estimates the printed weight.

        Args:
            request: Mesh, material, profile and infill for this computation.

        Returns:
            A WeightEstimate naming its source.
        """
        pass

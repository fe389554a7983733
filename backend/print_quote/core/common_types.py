# core/common_types.py
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from . import utils

# --- Enums ---

class EstimateSource(str, Enum):
    """Which pipeline produced a weight figure."""
    GEOMETRIC = "Geometric"
    SLICER = "Slicer"

class SlicingState(str, Enum):
    """Lifecycle of a single external slicing attempt."""
    IDLE = "Idle"
    SLICING = "Slicing"
    SUCCESS = "Success"
    FAILED = "Failed"

class QuoteStatus(str, Enum):
    """Outcome of one quote computation."""
    OK = "OK"
    INVALID_MESH = "Invalid Mesh" # Placeholder output, no exception raised
    FAILED = "Failed"             # Calculation failed for this request only

# --- Geometry Related Models ---

class BoundingBox(BaseModel):
    """Represents the axis-aligned bounding box (mm)."""
    model_config = ConfigDict(frozen=True)

    min_x: float
    min_y: float
    min_z: float
    max_x: float
    max_y: float
    max_z: float
    size_x: float
    size_y: float
    size_z: float

class MeshMetrics(BaseModel):
    """Enclosed volume, surface area and extents of a triangle mesh."""
    model_config = ConfigDict(frozen=True)

    triangle_count: int = Field(..., ge=0)
    volume_mm3: float = Field(..., ge=0, description="Absolute value of the signed tetrahedron sum.")
    surface_area_mm2: float = Field(..., ge=0)
    bounding_box: BoundingBox

    @computed_field
    @property
    def volume_cm3(self) -> float:
        return self.volume_mm3 / 1000.0

# --- Catalog Models ---

class MaterialSpec(BaseModel):
    """Holds density and price information for a filament material."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique identifier for the material (e.g., 'PLA').")
    name: str = Field(..., description="User-friendly name.")
    density_g_cm3: float = Field(..., gt=0, description="Density in grams per cubic centimeter.")
    price_per_kg: float = Field(..., ge=0, description="Cost of the material per kilogram.")

class PrintProfile(BaseModel):
    """A named quality tier fixing layer height and shell parameters."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique identifier for the profile (e.g., 'standard').")
    name: str = Field(..., description="User-friendly name (e.g., 'Standard Quality').")
    layer_height_mm: float = Field(..., gt=0)
    wall_count: int = Field(..., ge=1, description="Number of perimeter lines.")
    line_width_mm: float = Field(0.4, gt=0, description="Nozzle / extrusion line width.")
    top_layers: int = Field(..., ge=0)
    bottom_layers: int = Field(..., ge=0)
    labor_cost: float = Field(..., ge=0, description="Labor charge for this tier (used by the tiered labor policy).")

# --- Estimation Models ---

class VolumeSplit(BaseModel):
    """Shell / interior partition of a mesh's enclosed volume for one profile."""
    model_config = ConfigDict(frozen=True)

    total_volume_mm3: float = Field(..., ge=0)
    surface_area_mm2: float = Field(..., ge=0)
    shell_volume_mm3: float = Field(..., ge=0)
    interior_volume_mm3: float = Field(..., ge=0)

class WeightEstimate(BaseModel):
    """Deposited material weight and the path that produced it."""
    weight_g: float = Field(..., ge=0)
    source: EstimateSource
    volume_split: Optional[VolumeSplit] = Field(None, description="Only set by the geometric path.")
    material_volume_mm3: Optional[float] = Field(None, ge=0)
    slicing_state: Optional[SlicingState] = Field(None, description="Final state of the slicing attempt, if one was made.")

class CostBreakdown(BaseModel):
    """Weight and price of a print. Recomputed from scratch on every input change."""
    model_config = ConfigDict(frozen=True)

    weight_g: float = Field(..., ge=0)
    material_cost: float = Field(..., ge=0)
    labor_cost: float = Field(..., ge=0)
    total_cost: float = Field(..., ge=0)

    def rounded(self) -> "CostBreakdown":
        """Returns the display-precision copy (every field half-up to 2 decimals)."""
        return CostBreakdown(
            weight_g=utils.round_half_up(self.weight_g),
            material_cost=utils.round_half_up(self.material_cost),
            labor_cost=utils.round_half_up(self.labor_cost),
            total_cost=utils.round_half_up(self.total_cost),
        )

# --- Slicing Collaborator Protocol ---

class SlicingSettings(BaseModel):
    """Print settings submitted to the slicing collaborator alongside the mesh bytes."""
    model_config = ConfigDict(frozen=True)

    layer_height: float = Field(..., gt=0)
    wall_line_count: int = Field(..., ge=1)
    top_layers: int = Field(..., ge=0)
    bottom_layers: int = Field(..., ge=0)
    infill_percent: int = Field(..., ge=0, le=100)
    infill_pattern: str = Field("grid")
    material_density: float = Field(..., gt=0, description="g/cm3")
    print_speed: float = Field(60.0, gt=0, description="mm/s")

    @classmethod
    def from_inputs(cls, profile: PrintProfile, material: MaterialSpec, infill_fraction: float) -> "SlicingSettings":
        return cls(
            layer_height=profile.layer_height_mm,
            wall_line_count=profile.wall_count,
            top_layers=profile.top_layers,
            bottom_layers=profile.bottom_layers,
            infill_percent=int(round(infill_fraction * 100)),
            material_density=material.density_g_cm3,
        )

class SlicingResponse(BaseModel):
    """Slicer metadata: exactly one of filament weight or filament volume."""
    model_config = ConfigDict(frozen=True)

    filament_weight_g: Optional[float] = Field(None, ge=0)
    filament_volume_mm3: Optional[float] = Field(None, ge=0)

    @model_validator(mode="after")
    def exactly_one_figure(self) -> "SlicingResponse":
        if (self.filament_weight_g is None) == (self.filament_volume_mm3 is None):
            raise ValueError("exactly one of filament_weight_g or filament_volume_mm3 must be set")
        return self

    def to_weight_g(self, density_g_cm3: float) -> float:
        if self.filament_weight_g is not None:
            return self.filament_weight_g
        return (self.filament_volume_mm3 / 1000.0) * density_g_cm3

# --- Quote Result ---

class QuoteResult(BaseModel):
    """Result of one quote computation, tagged with the generation that requested it."""
    generation: int = Field(0, ge=0)
    status: QuoteStatus
    material_id: str
    profile_id: str
    infill_percent: int = Field(..., description="Echo of the requested infill, even when it was rejected.")
    breakdown: Optional[CostBreakdown] = Field(None, description="Full precision. Absent when the calculation failed.")
    display: Optional[CostBreakdown] = Field(None, description="Rounded copy of breakdown for presentation.")
    estimate_source: Optional[EstimateSource] = None
    mesh_metrics: Optional[MeshMetrics] = None
    volume_split: Optional[VolumeSplit] = None
    error_message: Optional[str] = None
    processing_time_sec: float = Field(0.0, ge=0)

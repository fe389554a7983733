# core/geometry.py

import io
import os
import math
import struct
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import trimesh

from .common_types import BoundingBox, MeshMetrics
from .exceptions import FileFormatError, GeometryProcessingError, InvalidMeshError

logger = logging.getLogger(__name__)

STL_HEADER_BYTES = 80
STL_COUNT_BYTES = 4

# Relative tolerances below which an enclosed volume is treated as zero.
ZERO_VOLUME_EXTENT_RTOL = 1e-9
ZERO_VOLUME_RESIDUE_RTOL = 1e-12

ArrayLike = Union[np.ndarray, Sequence]


@dataclass(frozen=True, eq=False)
class Mesh:
    """
    An unindexed triangle soup in millimetres.

    Every face is stored with its own three vertices, in file order, as a
    read-only (n, 3, 3) float64 array. Meshes are replaced wholesale when a new
    file is loaded and are never modified in place.
    """
    triangles: np.ndarray = field(repr=False)

    def __post_init__(self):
        tri = np.array(self.triangles, dtype=np.float64, copy=True)
        if tri.size == 0:
            tri = tri.reshape(0, 3, 3)
        if tri.ndim != 3 or tri.shape[1:] != (3, 3):
            raise InvalidMeshError(f"Triangles must have shape (n, 3, 3), got {tri.shape}.")
        if not np.all(np.isfinite(tri)):
            raise InvalidMeshError("Mesh contains non-finite vertex coordinates.")
        tri.setflags(write=False)
        object.__setattr__(self, "triangles", tri)

    # --- Constructors ---

    @classmethod
    def empty(cls) -> "Mesh":
        return cls(np.zeros((0, 3, 3)))

    @classmethod
    def from_triangles(cls, triangles: ArrayLike) -> "Mesh":
        return cls(np.asarray(triangles, dtype=np.float64))

    @classmethod
    def from_flat_vertices(cls, vertices: ArrayLike) -> "Mesh":
        """
        Builds a mesh from a flat vertex stream where every 3 consecutive
        vertices form one face (the layout of an STL position buffer).

        Raises:
            InvalidMeshError: If the vertex count is not a multiple of 3.
        """
        verts = np.asarray(vertices, dtype=np.float64)
        if verts.size == 0:
            return cls.empty()
        if verts.size % 3 != 0:
            raise InvalidMeshError(f"Coordinate count {verts.size} does not describe 3D vertices.")
        verts = verts.reshape(-1, 3)
        if len(verts) % 3 != 0:
            raise InvalidMeshError(f"Vertex count {len(verts)} is not a multiple of 3.")
        return cls(verts.reshape(-1, 3, 3))

    @classmethod
    def from_trimesh(cls, mesh: trimesh.Trimesh) -> "Mesh":
        if len(mesh.faces) == 0:
            return cls.empty()
        return cls(np.asarray(mesh.triangles, dtype=np.float64))

    # --- Properties & Transforms ---

    @property
    def triangle_count(self) -> int:
        return int(self.triangles.shape[0])

    @property
    def is_empty(self) -> bool:
        return self.triangle_count == 0

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        if self.is_empty:
            zero = np.zeros(3)
            return zero, zero.copy()
        points = self.triangles.reshape(-1, 3)
        return points.min(axis=0), points.max(axis=0)

    def translated(self, offset: ArrayLike) -> "Mesh":
        return Mesh(self.triangles + np.asarray(offset, dtype=np.float64).reshape(1, 1, 3))

    def scaled(self, factor: float) -> "Mesh":
        return Mesh(self.triangles * float(factor))

    def centered(self) -> "Mesh":
        """Returns a copy whose bounding-box centre sits at the origin."""
        if self.is_empty:
            return self
        lo, hi = self.bounds()
        return self.translated(-(lo + hi) / 2.0)

    def to_stl_bytes(self) -> bytes:
        """Exports the mesh as binary STL (for collaborators that take file bytes)."""
        n = self.triangle_count
        tm = trimesh.Trimesh(
            vertices=self.triangles.reshape(-1, 3),
            faces=np.arange(n * 3).reshape(-1, 3),
            process=False,
        )
        return tm.export(file_type="stl")


# --- Loading ---

def _is_empty_binary_stl(data: bytes) -> bool:
    header_len = STL_HEADER_BYTES + STL_COUNT_BYTES
    if len(data) != header_len:
        return False
    (count,) = struct.unpack("<I", data[STL_HEADER_BYTES:header_len])
    return count == 0


def load_mesh_from_bytes(data: bytes, file_name: str = "model.stl") -> Mesh:
    """
    Parses an STL byte buffer (binary or ASCII) into a Mesh.

    Faces are kept unmerged and in file order so each one contributes exactly
    once to the volume and area sums.

    Args:
        data: Raw file contents.
        file_name: Used for log messages only.

    Returns:
        The parsed Mesh. An STL declaring zero triangles yields an empty Mesh.

    Raises:
        FileFormatError: If the buffer is empty or cannot be parsed as STL.
        GeometryProcessingError: If parsing produced something other than a single mesh.
    """
    if not data:
        raise FileFormatError(f"'{file_name}' is empty.")
    if _is_empty_binary_stl(data):
        logger.warning(f"'{file_name}' declares zero triangles.")
        return Mesh.empty()

    try:
        loaded = trimesh.load(io.BytesIO(data), file_type="stl", force="mesh", process=False)
    except Exception as e:
        logger.error(f"Trimesh failed to load STL '{file_name}': {e}", exc_info=True)
        raise FileFormatError(f"Failed to parse STL file '{file_name}': {e}") from e

    if not isinstance(loaded, trimesh.Trimesh):
        raise GeometryProcessingError(f"Loaded object from '{file_name}' is not a single triangle mesh.")

    mesh = Mesh.from_trimesh(loaded)
    logger.info(f"Loaded '{file_name}': {mesh.triangle_count} triangles.")
    return mesh


def load_mesh(file_path: str) -> Mesh:
    """
    Loads a Mesh from an STL file on disk.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        FileFormatError: If the extension is not .stl or the contents are unreadable.
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Input file not found: {file_path}")

    file_name = os.path.basename(file_path)
    file_ext = os.path.splitext(file_name)[1].lower()
    if file_ext != ".stl":
        raise FileFormatError(f"Unsupported file format: '{file_ext}'. Use STL.")

    with open(file_path, "rb") as f:
        data = f.read()
    return load_mesh_from_bytes(data, file_name=file_name)


# --- Mesh Metrics ---

def mesh_volume(mesh: Mesh) -> float:
    """
    Enclosed volume (mm³) by the signed tetrahedron method.

    Each face p1, p2, p3 contributes p1 · (p2 × p3) / 6, the signed volume of the
    tetrahedron it forms with the origin. Contributions from a closed surface
    cancel outside the solid wherever the origin lies, so the result does not
    depend on translation. The absolute value is returned because a consistently
    inward winding gives a negative total.

    The per-face terms are summed with math.fsum, which is exactly rounded and
    therefore independent of summation order. Away from the origin the terms of
    a surface enclosing nothing no longer cancel exactly; totals within
    volume_tolerance() are reported as exactly 0.0.
    """
    if mesh.is_empty:
        return 0.0
    signed = _signed_volume_terms(mesh)
    volume = abs(math.fsum(signed)) / 6.0
    if volume <= volume_tolerance(mesh, signed):
        return 0.0
    return volume


def _signed_volume_terms(mesh: Mesh) -> np.ndarray:
    tri = mesh.triangles
    p1, p2, p3 = tri[:, 0], tri[:, 1], tri[:, 2]
    return np.einsum("ij,ij->i", p1, np.cross(p2, p3))


def volume_tolerance(mesh: Mesh, signed_terms: Optional[np.ndarray] = None) -> float:
    """
    Largest volume (mm³) treated as rounding residue rather than enclosed material.

    The larger of a share of the bounding-box diagonal cubed and a share of the
    summed per-face term magnitudes; the latter grows with distance from the
    origin at the same rate as the cancellation residue.
    """
    if mesh.is_empty:
        return 0.0
    if signed_terms is None:
        signed_terms = _signed_volume_terms(mesh)
    lo, hi = mesh.bounds()
    diagonal = float(np.linalg.norm(hi - lo))
    extent_tol = ZERO_VOLUME_EXTENT_RTOL * diagonal ** 3
    residue_tol = ZERO_VOLUME_RESIDUE_RTOL * math.fsum(np.abs(signed_terms)) / 6.0
    return max(extent_tol, residue_tol)


def mesh_surface_area(mesh: Mesh) -> float:
    """Total surface area (mm²): sum of |(p2 - p1) × (p3 - p1)| / 2 over all faces."""
    if mesh.is_empty:
        return 0.0
    tri = mesh.triangles
    p1, p2, p3 = tri[:, 0], tri[:, 1], tri[:, 2]
    doubled = np.linalg.norm(np.cross(p2 - p1, p3 - p1), axis=1)
    return math.fsum(doubled) / 2.0


def get_bounding_box(mesh: Mesh) -> BoundingBox:
    lo, hi = mesh.bounds()
    size = hi - lo
    return BoundingBox(
        min_x=float(lo[0]), min_y=float(lo[1]), min_z=float(lo[2]),
        max_x=float(hi[0]), max_y=float(hi[1]), max_z=float(hi[2]),
        size_x=float(size[0]), size_y=float(size[1]), size_z=float(size[2]),
    )


def get_mesh_metrics(mesh: Mesh) -> MeshMetrics:
    """
    Extracts volume, surface area and bounding box from a Mesh.

    Raises:
        GeometryProcessingError: If the metrics cannot be calculated.
    """
    try:
        metrics = MeshMetrics(
            triangle_count=mesh.triangle_count,
            volume_mm3=mesh_volume(mesh),
            surface_area_mm2=mesh_surface_area(mesh),
            bounding_box=get_bounding_box(mesh),
        )
    except Exception as e:
        logger.error(f"Failed to extract mesh metrics: {e}", exc_info=True)
        raise GeometryProcessingError(f"Failed to calculate mesh metrics: {e}") from e

    logger.debug(
        f"Mesh metrics: {metrics.triangle_count} faces, volume={metrics.volume_mm3:.3f} mm³, "
        f"area={metrics.surface_area_mm2:.3f} mm²"
    )
    return metrics

# processes/print_3d/shell_model.py

import logging
from typing import Callable, Dict

from ...core.common_types import PrintProfile, VolumeSplit
from ...core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# A blend maps a profile to the average shell thickness (mm) used for the
# shell volume estimate: shell_volume = surface_area * thickness.
ShellBlend = Callable[[PrintProfile], float]


def wall_thickness(profile: PrintProfile) -> float:
    return profile.wall_count * profile.line_width_mm

def top_thickness(profile: PrintProfile) -> float:
    return profile.top_layers * profile.layer_height_mm

def bottom_thickness(profile: PrintProfile) -> float:
    return profile.bottom_layers * profile.layer_height_mm


def half_blend_shell_thickness(profile: PrintProfile) -> float:
    """
    (walls + top + bottom) / 2.

    Empirical tuning, not a physical derivation: the whole surface is charged
    with one averaged thickness even though walls only cover the sides and the
    top/bottom skins only cover horizontal faces.
    """
    return (wall_thickness(profile) + top_thickness(profile) + bottom_thickness(profile)) / 2.0


def third_blend_shell_thickness(profile: PrintProfile) -> float:
    """(walls + top + bottom) / 3. Earlier, lighter variant of the same heuristic."""
    return (wall_thickness(profile) + top_thickness(profile) + bottom_thickness(profile)) / 3.0


SHELL_BLENDS: Dict[str, ShellBlend] = {
    "half": half_blend_shell_thickness,
    "third": third_blend_shell_thickness,
}

average_shell_thickness: ShellBlend = half_blend_shell_thickness


def get_shell_blend(name: str) -> ShellBlend:
    blend = SHELL_BLENDS.get(name)
    if blend is None:
        raise ConfigurationError(f"Unknown shell blend '{name}'. Available: {list(SHELL_BLENDS)}")
    return blend


def split_volume(total_volume_mm3: float,
                 surface_area_mm2: float,
                 profile: PrintProfile,
                 blend: ShellBlend = average_shell_thickness) -> VolumeSplit:
    """
    Partitions the enclosed volume into a fully dense shell and a sparse interior.

    The shell can never exceed the part: when area * thickness is larger than the
    total volume the part is treated as solid (shell == total, interior == 0).
    A zero-volume mesh yields an all-zero split.

    Args:
        total_volume_mm3: Enclosed mesh volume.
        surface_area_mm2: Mesh surface area.
        profile: Print profile supplying wall/skin parameters.
        blend: Function giving the average shell thickness for the profile.

    Returns:
        The VolumeSplit for this mesh and profile.
    """
    total = max(0.0, float(total_volume_mm3))
    area = max(0.0, float(surface_area_mm2))
    if total == 0.0:
        return VolumeSplit(total_volume_mm3=0.0, surface_area_mm2=area,
                           shell_volume_mm3=0.0, interior_volume_mm3=0.0)

    thickness = blend(profile)
    shell = min(area * thickness, total)
    interior = max(0.0, total - shell)
    if shell == total:
        logger.debug(f"Shell estimate clamped to total volume ({total:.3f} mm³); part treated as solid.")
    logger.debug(f"Shell thickness {thickness:.3f} mm -> shell {shell:.3f} mm³, interior {interior:.3f} mm³")
    return VolumeSplit(total_volume_mm3=total, surface_area_mm2=area,
                       shell_volume_mm3=shell, interior_volume_mm3=interior)

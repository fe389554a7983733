# processes/print_3d/material_estimator.py

from ...core.common_types import VolumeSplit

MM3_PER_CM3 = 1000.0


def validate_infill_fraction(infill_fraction: float) -> float:
    fraction = float(infill_fraction)
    if not 0.0 <= fraction <= 1.0:
        raise ValueError(f"Infill fraction must be within [0, 1], got {infill_fraction}")
    return fraction


def deposited_volume(split: VolumeSplit, infill_fraction: float) -> float:
    """Shell is always fully dense; only the interior honours the infill fraction."""
    return split.shell_volume_mm3 + split.interior_volume_mm3 * validate_infill_fraction(infill_fraction)


def volume_to_weight(volume_mm3: float, density_g_cm3: float) -> float:
    return (volume_mm3 / MM3_PER_CM3) * density_g_cm3


def estimate_weight(split: VolumeSplit, infill_fraction: float, density_g_cm3: float) -> float:
    """Weight in grams of the material deposited for a volume split."""
    return volume_to_weight(deposited_volume(split, infill_fraction), density_g_cm3)

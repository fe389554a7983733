# processes/print_3d/slicer.py

import os
import re
import abc
import time
import shutil
import asyncio
import logging
import platform
import tempfile
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from ...core.common_types import SlicingResponse, SlicingSettings
from ...core.exceptions import ConfigurationError, SlicerError

logger = logging.getLogger(__name__)

# Constants
DEFAULT_SLICER_TIMEOUT = 60 # seconds
DEFAULT_NOZZLE_DIAMETER = 0.4 # mm

# Keys accepted in slicer metadata, mapped to SlicingResponse fields.
# The short names are what browser-side Cura builds report.
WEIGHT_KEYS = ("filament_weight_g", "filament_weight")
VOLUME_KEYS = ("filament_volume_mm3", "filament_amount")


def parse_slicing_metadata(payload: Any) -> SlicingResponse:
    """
    Normalizes a slicer metadata record into a SlicingResponse.

    A non-zero weight figure wins; otherwise the volume figure is used. The
    record may be wrapped in a top-level "metadata" key.

    Raises:
        SlicerError: If the payload is not a mapping or carries no usable figure.
    """
    if isinstance(payload, dict) and isinstance(payload.get("metadata"), dict):
        payload = payload["metadata"]
    if not isinstance(payload, dict):
        raise SlicerError(f"Slicer metadata must be an object, got {type(payload).__name__}.")

    weight = next((payload[k] for k in WEIGHT_KEYS if payload.get(k) is not None), None)
    volume = next((payload[k] for k in VOLUME_KEYS if payload.get(k) is not None), None)

    try:
        if weight:
            return SlicingResponse(filament_weight_g=weight)
        if volume is not None:
            return SlicingResponse(filament_volume_mm3=volume)
        if weight is not None:
            return SlicingResponse(filament_weight_g=weight)
    except ValidationError as e:
        raise SlicerError(f"Malformed slicer metadata: {e}") from e
    raise SlicerError(f"Slicer metadata has neither filament weight nor volume: {sorted(payload)}")


class SlicingBackend(abc.ABC):
    """An external engine that slices a mesh and reports filament usage."""

    name: str = "abstract"

    @abc.abstractmethod
    async def slice(self, mesh_bytes: bytes, settings: SlicingSettings) -> SlicingResponse:
        """
        Slices the mesh once.

        Raises:
            SlicerError: On any failure to obtain usable metadata.
        """
        pass


# --- PrusaSlicer CLI ---

def find_slicer_executable(slicer_name: str = "prusa-slicer") -> Optional[str]:
    """
    Attempts to find the PrusaSlicer (or compatible) executable path.

    Checks the system PATH and common installation paths for Linux, macOS,
    and Windows.

    Args:
        slicer_name: The base name of the slicer executable (e.g., "prusa-slicer").
                     Also checks for the "-console" variant.

    Returns:
        The absolute path to the executable if found, otherwise None.
    """
    console_variant = f"{slicer_name}-console"

    for name in [slicer_name, console_variant]:
        found_path = shutil.which(name)
        if found_path and os.access(found_path, os.X_OK):
            logger.info(f"Found slicer executable in system PATH: {found_path}")
            return found_path

    possible_paths = []
    home_dir = os.path.expanduser("~")

    if platform.system() == "Windows":
        program_files = os.environ.get("ProgramFiles", "C:\\Program Files")
        possible_paths.extend([
            os.path.join(program_files, "Prusa3D", "PrusaSlicer", f"{console_variant}.exe"),
            os.path.join(program_files, "PrusaSlicer", f"{console_variant}.exe"),
            os.path.join(program_files, "Prusa3D", "PrusaSlicer", f"{slicer_name}.exe"),
            os.path.join(home_dir, "AppData", "Local", "Programs", "PrusaSlicer", f"{slicer_name}.exe"),
        ])
    elif platform.system() == "Darwin":
        possible_paths.extend([
            f"/Applications/PrusaSlicer.app/Contents/MacOS/{slicer_name}",
            "/usr/local/bin/prusa-slicer",
        ])
    else:
        possible_paths.extend([
            f"/usr/bin/{slicer_name}",
            f"/usr/local/bin/{slicer_name}",
            f"/snap/bin/{slicer_name}",
            f"/opt/{slicer_name}/bin/{slicer_name}",
            f"{home_dir}/Applications/{slicer_name}/{slicer_name}",
        ])

    logger.debug(f"Checking common paths: {possible_paths}")
    for path in possible_paths:
        if os.path.isfile(path) and os.access(path, os.X_OK):
            logger.info(f"Found valid slicer executable at common path: {path}")
            return path

    logger.warning(f"Slicer executable ('{slicer_name}' or variant) not found via auto-detection.")
    return None


def _generate_slicer_config(temp_dir: str, settings: SlicingSettings,
                            nozzle_diameter: float = DEFAULT_NOZZLE_DIAMETER) -> str:
    """Writes a PrusaSlicer .ini config for the given settings and returns its path."""
    config_path = os.path.join(temp_dir, "print_config.ini")
    lines = [
        "printer_technology = FFF",
        f"nozzle_diameter = {nozzle_diameter:.2f}",
        f"layer_height = {settings.layer_height:.3f}",
        f"first_layer_height = {settings.layer_height:.3f}",
        f"perimeters = {settings.wall_line_count}",
        f"top_solid_layers = {settings.top_layers}",
        f"bottom_solid_layers = {settings.bottom_layers}",
        f"fill_density = {settings.infill_percent}%",
        f"fill_pattern = {settings.infill_pattern}",
        f"filament_density = {settings.material_density:.3f}",
        f"perimeter_speed = {settings.print_speed:.0f}",
        f"infill_speed = {settings.print_speed:.0f}",
        "support_material = 0",
        "gcode_comments = 1",
        "gcode_flavor = marlin",
    ]
    try:
        with open(config_path, "w") as f:
            f.write("\n".join(lines) + "\n")
    except IOError as e:
        logger.error(f"Failed to write slicer config file '{config_path}': {e}", exc_info=True)
        raise ConfigurationError(f"Could not write temporary slicer config: {e}") from e
    return config_path


def _parse_gcode_estimates(gcode_content: str) -> Tuple[Optional[float], Optional[float]]:
    """
    Parses PrusaSlicer G-code comments for filament usage.

    Returns:
        (filament_mm3, filament_g); either may be None when the comment is absent.
    """
    filament_mm3 = None
    filament_g = None

    # '; filament used [mm3] = 12345.67' or '; filament used [cm3] = 12.34'
    vol_match_mm3 = re.search(r";\s*filament used\s*\[mm3\]\s*=\s*([\d.]+)", gcode_content)
    vol_match_cm3 = re.search(r";\s*filament used\s*\[cm3\]\s*=\s*([\d.]+)", gcode_content)
    if vol_match_mm3:
        filament_mm3 = float(vol_match_mm3.group(1))
    elif vol_match_cm3:
        filament_mm3 = float(vol_match_cm3.group(1)) * 1000.0

    # '; filament used [g] = 45.67' (also matches '; total filament used [g] = ...')
    weight_match = re.search(r";\s*(?:total\s+)?filament used\s*\[g\]\s*=\s*([\d.]+)", gcode_content)
    if weight_match:
        filament_g = float(weight_match.group(1))

    logger.debug(f"Parsed G-code estimates: volume={filament_mm3} mm3, weight={filament_g} g")
    return filament_mm3, filament_g


class PrusaSlicerBackend(SlicingBackend):
    """Runs the PrusaSlicer command line on a temporary copy of the mesh."""

    name = "prusa"

    def __init__(self, executable_path: Optional[str] = None):
        self.executable_path = executable_path or find_slicer_executable()

    async def slice(self, mesh_bytes: bytes, settings: SlicingSettings) -> SlicingResponse:
        if not self.executable_path or not os.path.exists(self.executable_path):
            raise SlicerError(f"Slicer executable not found: {self.executable_path}")

        with tempfile.TemporaryDirectory(prefix="slicer_") as temp_dir:
            stl_path = os.path.join(temp_dir, "model.stl")
            gcode_output_path = os.path.join(temp_dir, "output.gcode")
            with open(stl_path, "wb") as f:
                f.write(mesh_bytes)
            config_file_path = _generate_slicer_config(temp_dir, settings)

            cmd: List[str] = [
                self.executable_path,
                "--load", config_file_path,
                "--export-gcode",
                "--output", gcode_output_path,
                "--center", "0,0",
                stl_path,
            ]
            logger.info(f"Running slicer command: {' '.join(cmd)}")
            slicer_start_time = time.time()

            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                stdout, stderr = await process.communicate()
            except asyncio.CancelledError:
                # Timed out or superseded: do not leave the slicer running.
                if process.returncode is None:
                    process.kill()
                await process.wait()
                raise

            logger.info(f"Slicer process finished in {time.time() - slicer_start_time:.2f} seconds "
                        f"with return code {process.returncode}.")
            stderr_text = stderr.decode(errors="replace") if stderr else ""
            if stdout:
                logger.debug(f"Slicer stdout:\n{stdout.decode(errors='replace')}")

            if process.returncode != 0:
                raise SlicerError(f"Slicer failed with return code {process.returncode}: {stderr_text[:1000]}")
            if not os.path.exists(gcode_output_path) or os.path.getsize(gcode_output_path) == 0:
                raise SlicerError("Slicer exited successfully but produced no G-code output.")

            with open(gcode_output_path, "r") as f:
                gcode_content = f.read()

        filament_mm3, filament_g = _parse_gcode_estimates(gcode_content)
        if filament_g is None and filament_mm3 is None:
            raise SlicerError("Could not parse filament usage from G-code comments.")
        return parse_slicing_metadata({"filament_weight_g": filament_g, "filament_volume_mm3": filament_mm3})


# --- Remote Slicing Service ---

class HttpSlicingBackend(SlicingBackend):
    """
    Posts the mesh and settings to a slicing service and reads back its metadata.

    Request: multipart form with the mesh under 'file' and one form field per
    SlicingSettings attribute. Response: a JSON object carrying the filament
    weight (g) or volume (mm3), optionally wrapped in "metadata".
    """

    name = "http"

    def __init__(self, url: str, timeout: float = DEFAULT_SLICER_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        if not url:
            raise ConfigurationError("A slicing service URL is required for the http backend.")
        self.url = url
        self.timeout = timeout
        self.transport = transport

    def _form_fields(self, settings: SlicingSettings) -> Dict[str, str]:
        return {key: str(value) for key, value in settings.model_dump().items()}

    async def slice(self, mesh_bytes: bytes, settings: SlicingSettings) -> SlicingResponse:
        files = {"file": ("model.stl", mesh_bytes, "application/octet-stream")}
        logger.info(f"Posting {len(mesh_bytes)} bytes to slicing service {self.url}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.url, data=self._form_fields(settings), files=files)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            raise SlicerError(f"Slicing service returned HTTP {e.response.status_code}.") from e
        except httpx.HTTPError as e:
            raise SlicerError(f"Slicing service request failed: {e}") from e
        except ValueError as e:
            raise SlicerError(f"Slicing service returned invalid JSON: {e}") from e

        return parse_slicing_metadata(payload)


def create_slicing_backend(backend_name: str,
                           slicer_path: Optional[str] = None,
                           service_url: Optional[str] = None,
                           timeout: float = DEFAULT_SLICER_TIMEOUT) -> SlicingBackend:
    """Builds the configured slicing backend ('prusa' or 'http')."""
    if backend_name == PrusaSlicerBackend.name:
        return PrusaSlicerBackend(executable_path=slicer_path)
    if backend_name == HttpSlicingBackend.name:
        return HttpSlicingBackend(url=service_url, timeout=timeout)
    raise ConfigurationError(f"Unknown slicing backend '{backend_name}'. Use prusa or http.")

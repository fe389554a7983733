# config.py

import logging
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
LABOR_POLICIES = ['flat', 'tiered', 'derived']
SHELL_BLENDS = ['half', 'third']
SLICING_BACKENDS = ['prusa', 'http']


class Settings(BaseSettings):
    """
    Application configuration settings loaded from environment variables and .env file.
    """
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore' # Ignore extra fields from environment/dotenv
    )

    # Logging Configuration
    log_level: str = Field("INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")

    # Recompute Scheduling
    debounce_ms: int = Field(300, description="Quiet period before a burst of input changes triggers one recompute.")

    # External Slicing (optional higher-fidelity path)
    slicing_enabled: bool = Field(False, description="Ask an external slicer for the weight before falling back to geometry.")
    slicing_backend: str = Field("prusa", description="'prusa' (local PrusaSlicer CLI) or 'http' (remote slicing service).")
    slicer_path: Optional[str] = Field(None, description="Optional override path for the PrusaSlicer executable.")
    slicing_service_url: Optional[str] = Field(None, description="Endpoint of the remote slicing service.")
    slicer_timeout_sec: float = Field(60.0, description="Timeout for the single slicing attempt.")

    # Pricing Configuration
    labor_policy: str = Field("flat", description="Labor cost strategy: flat, tiered or derived.")
    flat_labor_cost: float = Field(50.0, description="Labor charge used by the flat policy.")
    derived_labor_base_cost: float = Field(50.0, description="Labor charge at the reference layer height.")
    derived_labor_base_layer_height: float = Field(0.20, description="Reference layer height (mm) for the derived policy.")
    currency: str = Field("TL", description="Currency suffix for display strings.")

    # Estimation Heuristics
    shell_blend: str = Field("half", description="Shell thickness blend: 'half' or 'third'.")

    # Defaults for a fresh session
    default_material: str = Field("PLA")
    default_profile: str = Field("standard")
    default_infill_percent: int = Field(20)

    # Validators
    @field_validator('log_level')
    @classmethod
    def log_level_must_be_valid(cls, v):
        if v.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f'log_level must be one of {VALID_LOG_LEVELS}')
        return v.upper()

    @field_validator('labor_policy')
    @classmethod
    def labor_policy_must_be_known(cls, v):
        if v.lower() not in LABOR_POLICIES:
            raise ValueError(f'labor_policy must be one of {LABOR_POLICIES}')
        return v.lower()

    @field_validator('shell_blend')
    @classmethod
    def shell_blend_must_be_known(cls, v):
        if v.lower() not in SHELL_BLENDS:
            raise ValueError(f'shell_blend must be one of {SHELL_BLENDS}')
        return v.lower()

    @field_validator('slicing_backend')
    @classmethod
    def slicing_backend_must_be_known(cls, v):
        if v.lower() not in SLICING_BACKENDS:
            raise ValueError(f'slicing_backend must be one of {SLICING_BACKENDS}')
        return v.lower()

    @field_validator('debounce_ms')
    @classmethod
    def debounce_must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError('debounce_ms must be >= 0')
        return v

    @field_validator('slicer_timeout_sec', 'derived_labor_base_layer_height')
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError('value must be > 0')
        return v

    @field_validator('flat_labor_cost', 'derived_labor_base_cost')
    @classmethod
    def cost_must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError('labor costs must be >= 0')
        return v

    @field_validator('default_infill_percent')
    @classmethod
    def infill_in_range(cls, v):
        if not 0 <= v <= 100:
            raise ValueError('default_infill_percent must be within 0..100')
        return v


def setup_logging(level: Optional[str] = None) -> None:
    """Configures the root logger for host applications embedding the estimator."""
    logging.basicConfig(level=(level or settings.log_level), format=LOG_FORMAT)


# --- Singleton Instance ---
# Create a single instance of the settings to be imported across the application
try:
    settings = Settings()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    logger.info(
        f"Configuration loaded successfully. Log level: {settings.log_level}, "
        f"Labor policy: {settings.labor_policy}, Slicing enabled: {settings.slicing_enabled}"
    )
    if settings.slicing_enabled:
        logger.info(f"Slicing backend: {settings.slicing_backend}, timeout {settings.slicer_timeout_sec}s")

except Exception as e:
    logging.basicConfig(level='INFO', format=LOG_FORMAT) # Default logger
    logger.error(f"CRITICAL: Failed to load application configuration: {e}", exc_info=True)
    # Fall back to built-in defaults, ignoring the environment that failed validation
    settings = Settings.model_construct()
    logger.warning("Continuing with default settings due to configuration load failure.")

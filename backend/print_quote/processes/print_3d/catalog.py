# processes/print_3d/catalog.py

import os
import json
import logging
from typing import Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ...core.common_types import MaterialSpec, PrintProfile
from ...core.exceptions import ConfigurationError, MaterialNotFoundError, ProfileNotFoundError

logger = logging.getLogger(__name__)

DATA_DIR = os.path.dirname(__file__)
DEFAULT_MATERIALS_PATH = os.path.join(DATA_DIR, "materials.json")
DEFAULT_PROFILES_PATH = os.path.join(DATA_DIR, "profiles.json")

EntryT = TypeVar("EntryT", bound=BaseModel)


def _load_table(path: str, model: Type[EntryT]) -> Dict[str, EntryT]:
    """Loads a JSON list of records, validating each entry through the pydantic model."""
    kind = model.__name__
    if not path or not os.path.exists(path):
        logger.error(f"{kind} table not found: {path}")
        raise ConfigurationError(f"{kind} definition file missing: {path}")

    try:
        with open(path, 'r') as f:
            raw_entries = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON from {path}: {e}", exc_info=True)
        raise ConfigurationError(f"Invalid JSON in {kind} table: {path}") from e

    if not isinstance(raw_entries, list):
        raise ConfigurationError(f"{kind} table {path} must contain a JSON list.")

    table: Dict[str, EntryT] = {}
    for raw in raw_entries:
        try:
            entry = model(**raw)
        except (TypeError, ValidationError) as e:
            entry_id = raw.get('id', 'N/A') if isinstance(raw, dict) else 'N/A'
            logger.warning(f"Skipping invalid {kind} definition in {os.path.basename(path)} for ID '{entry_id}': {e}")
            continue
        if entry.id in table:
            logger.warning(f"Duplicate {kind} ID '{entry.id}' in {os.path.basename(path)}; keeping the first.")
            continue
        table[entry.id] = entry

    if not table:
        raise ConfigurationError(f"No valid {kind} entries loaded from {path}.")
    logger.info(f"Loaded {len(table)} {kind} entries from {os.path.basename(path)}.")
    return table


class Catalog:
    """
    Immutable material and print-profile tables.

    Both tables are read once on construction; lookups never touch the disk.
    """

    def __init__(self, materials_path: Optional[str] = None, profiles_path: Optional[str] = None):
        self.materials: Dict[str, MaterialSpec] = _load_table(materials_path or DEFAULT_MATERIALS_PATH, MaterialSpec)
        self.profiles: Dict[str, PrintProfile] = _load_table(profiles_path or DEFAULT_PROFILES_PATH, PrintProfile)

    def get_material(self, material_id: str) -> MaterialSpec:
        """
        Retrieves the MaterialSpec for a given material ID.

        Raises:
            MaterialNotFoundError: If the material_id is not in the table.
        """
        material = self.materials.get(material_id)
        if not material:
            available_ids = list(self.materials.keys())
            raise MaterialNotFoundError(
                f"Material '{material_id}' is not available. Available materials: {available_ids}"
            )
        return material

    def get_profile(self, profile_id: str) -> PrintProfile:
        """
        Retrieves the PrintProfile for a given profile ID.

        Raises:
            ProfileNotFoundError: If the profile_id is not in the table.
        """
        profile = self.profiles.get(profile_id)
        if not profile:
            available_ids = list(self.profiles.keys())
            raise ProfileNotFoundError(
                f"Profile '{profile_id}' is not available. Available profiles: {available_ids}"
            )
        return profile

    def list_materials(self) -> List[MaterialSpec]:
        return list(self.materials.values())

    def list_profiles(self) -> List[PrintProfile]:
        return list(self.profiles.values())

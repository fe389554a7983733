# testing/test_catalog.py

import json

import pytest
from pydantic import ValidationError

from print_quote.config import Settings
from print_quote.core.exceptions import ConfigurationError, MaterialNotFoundError, ProfileNotFoundError
from print_quote.processes.print_3d.catalog import DEFAULT_PROFILES_PATH, Catalog

# --- Bundled tables ---

@pytest.mark.parametrize("material_id, density", [("PLA", 1.24), ("ABS", 1.04), ("PETG", 1.27)])
def test_bundled_materials(catalog: Catalog, material_id, density):
    material = catalog.get_material(material_id)
    assert material.density_g_cm3 == density
    assert material.price_per_kg == 700

def test_bundled_profiles(catalog: Catalog):
    assert [p.id for p in catalog.list_profiles()] == ["low", "standard", "dynamic", "super"]
    standard = catalog.get_profile("standard")
    assert (standard.layer_height_mm, standard.wall_count, standard.top_layers, standard.bottom_layers) == (0.20, 2, 4, 4)

def test_unknown_material(catalog: Catalog):
    with pytest.raises(MaterialNotFoundError, match="Available materials"):
        catalog.get_material("NYLON")

def test_unknown_profile(catalog: Catalog):
    with pytest.raises(ProfileNotFoundError):
        catalog.get_profile("ultra")

# --- Custom tables ---

def _write(path, payload) -> str:
    path.write_text(json.dumps(payload) if not isinstance(payload, str) else payload)
    return str(path)

def test_custom_material_table(tmp_path):
    materials = _write(tmp_path / "materials.json", [
        {"id": "TPU", "name": "TPU", "density_g_cm3": 1.21, "price_per_kg": 900},
    ])
    catalog = Catalog(materials_path=materials)
    assert [m.id for m in catalog.list_materials()] == ["TPU"]
    assert catalog.get_profile("standard").labor_cost == 50

def test_invalid_entries_are_skipped(tmp_path):
    materials = _write(tmp_path / "materials.json", [
        {"id": "PLA", "name": "PLA", "density_g_cm3": 1.24, "price_per_kg": 700},
        {"id": "BAD", "name": "Bad", "density_g_cm3": 0, "price_per_kg": 700},
        {"id": "PLA", "name": "Duplicate", "density_g_cm3": 2.0, "price_per_kg": 1},
        "not an object",
    ])
    catalog = Catalog(materials_path=materials)
    assert list(catalog.materials) == ["PLA"]
    assert catalog.get_material("PLA").density_g_cm3 == 1.24

def test_missing_table(tmp_path):
    with pytest.raises(ConfigurationError):
        Catalog(materials_path=str(tmp_path / "missing.json"))

def test_malformed_json(tmp_path):
    with pytest.raises(ConfigurationError):
        Catalog(materials_path=_write(tmp_path / "materials.json", "[{"))

def test_table_must_be_a_list(tmp_path):
    with pytest.raises(ConfigurationError):
        Catalog(profiles_path=_write(tmp_path / "profiles.json", {"standard": {}}))

def test_table_without_valid_entries(tmp_path):
    with pytest.raises(ConfigurationError):
        Catalog(materials_path=_write(tmp_path / "materials.json", []), profiles_path=DEFAULT_PROFILES_PATH)

# --- Settings ---

def test_settings_defaults():
    cfg = Settings.model_construct()
    assert cfg.debounce_ms == 300
    assert cfg.labor_policy == "flat"
    assert cfg.flat_labor_cost == 50.0
    assert cfg.slicer_timeout_sec == 60.0
    assert cfg.slicing_enabled is False

def test_settings_normalizes_names():
    cfg = Settings(log_level="debug", labor_policy="Derived", shell_blend="THIRD")
    assert (cfg.log_level, cfg.labor_policy, cfg.shell_blend) == ("DEBUG", "derived", "third")

@pytest.mark.parametrize("overrides", [
    {"log_level": "chatty"},
    {"labor_policy": "hourly"},
    {"slicing_backend": "cura"},
    {"debounce_ms": -1},
    {"slicer_timeout_sec": 0},
    {"default_infill_percent": 101},
    {"flat_labor_cost": -5},
])
def test_settings_validation(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)

def test_zero_debounce_is_allowed():
    assert Settings(debounce_ms=0).debounce_ms == 0

def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("LABOR_POLICY", "tiered")
    monkeypatch.setenv("DEBOUNCE_MS", "150")
    cfg = Settings()
    assert cfg.labor_policy == "tiered"
    assert cfg.debounce_ms == 150

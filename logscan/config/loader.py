import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    # Locations may be written as a mapping keyed by code
    locations = data.get("locations")
    if isinstance(locations, dict):
        data["locations"] = [{"code": code, **(entry or {})} for code, entry in locations.items()]

    patterns = data.get("patterns")
    if isinstance(patterns, dict):
        data["patterns"] = [{"code": code, **(entry or {})} for code, entry in patterns.items()]

    return AppConfig(**data)

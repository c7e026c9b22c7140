import yaml
from pathlib import Path
from .models import AppConfig


def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    # A comma-separated string is accepted for input_paths
    input_paths = data.get("input_paths")
    if isinstance(input_paths, str):
        data["input_paths"] = [p.strip() for p in input_paths.split(",") if p.strip()]

    return AppConfig(**data)

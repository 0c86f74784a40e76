# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from pathlib import Path
from typing import Any, Dict, Optional, Union

# Third-Party Imports
import yaml

# Local Imports
from microtrans import constants

# ==================================== FUNCTIONS ===================================== #

def resolve_relative_paths(config: Dict, config_dir: Path) -> Dict:
    """Converts any relative paths in the configuration to absolute paths based on
    the directory of the config file."""
    for key, value in config.items():
        if isinstance(value, str):
            if value.startswith("./") or value.startswith("../"):
                config[key] = (config_dir / value).resolve()
        elif isinstance(value, dict):
            config[key] = resolve_relative_paths(value, config_dir)
    return config


def get_config(
    config_path: Union[str, Path] = constants.DEFAULT_CONFIG_PATH
) -> Dict:
    with open(config_path, "r") as file:
        config = yaml.safe_load(file) or {}

    config_dir = Path(config_path).resolve().parent
    return resolve_relative_paths(config, config_dir)


def get_section(config: Optional[Dict], section: str) -> Dict[str, Any]:
    """Return one section of a loaded config, or an empty dict."""
    if not config:
        return {}
    return config.get(section) or {}

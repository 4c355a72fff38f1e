import os
import sys
from pathlib import Path


def _get_xdg_dir(env_var: str, fallback: str) -> Path:
    """Get XDG directory with fallback. On non-Linux platforms, use ~/.modelvault."""
    if sys.platform != "linux":
        return Path.home() / ".modelvault"

    xdg_value = os.environ.get(env_var)
    if xdg_value:
        return Path(xdg_value) / "modelvault"
    return Path.home() / fallback / "modelvault"


# MODELVAULT_HOME puts every file under a single directory
_MODELVAULT_HOME_ENV = os.environ.get("MODELVAULT_HOME")
if _MODELVAULT_HOME_ENV:
    MODELVAULT_CONFIG_HOME = Path.home() / _MODELVAULT_HOME_ENV
    MODELVAULT_DATA_HOME = Path.home() / _MODELVAULT_HOME_ENV
else:
    MODELVAULT_CONFIG_HOME = _get_xdg_dir("XDG_CONFIG_HOME", ".config")
    MODELVAULT_DATA_HOME = _get_xdg_dir("XDG_DATA_HOME", ".local/share")

# Installed (writable) model artifacts
MODELVAULT_MODELS_DIR_ENV = os.environ.get("MODELVAULT_MODELS_DIR")
MODELVAULT_MODELS_DIR = (
    Path(MODELVAULT_MODELS_DIR_ENV)
    if MODELVAULT_MODELS_DIR_ENV
    else MODELVAULT_DATA_HOME / "models"
)

# Read-only artifacts shipped with the package
MODELVAULT_BUNDLE_DIR_ENV = os.environ.get("MODELVAULT_BUNDLE_DIR")
MODELVAULT_BUNDLE_DIR = (
    Path(MODELVAULT_BUNDLE_DIR_ENV)
    if MODELVAULT_BUNDLE_DIR_ENV
    else Path(__file__).resolve().parent.parent / "resources" / "models"
)

MODELVAULT_FEEDBACK_FILE = MODELVAULT_DATA_HOME / "model_feedback.json"
MODELVAULT_LOG = MODELVAULT_DATA_HOME / "modelvault.log"
MODELVAULT_CONFIG_FILE = MODELVAULT_CONFIG_HOME / "config.toml"

ARTIFACT_SUFFIX = ".model"
PARTIAL_SUFFIX = ".partial"

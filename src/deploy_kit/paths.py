"""Per-project file locations used by deploy-kit.

Everything lives directly under the project root:
- .deploy-config.json          # project configuration
- .deployment-lock-<stage>     # local deployment lock, one per stage
"""

from pathlib import Path

CONFIG_FILE_NAME = ".deploy-config.json"
LOCK_FILE_PREFIX = ".deployment-lock-"

# Presence of either file means `sst deploy` builds the app itself
SST_CONFIG_FILES = ("sst.config.ts", "sst.config.js")


def get_lock_file_path(project_root: Path, stage: str) -> Path:
    """Return the lock file path for ``stage`` inside ``project_root``."""
    return Path(project_root) / f"{LOCK_FILE_PREFIX}{stage}"


def get_config_file_path(project_root: Path) -> Path:
    return Path(project_root) / CONFIG_FILE_NAME


def is_sst_project(project_root: Path) -> bool:
    root = Path(project_root)
    return any((root / name).exists() for name in SST_CONFIG_FILES)

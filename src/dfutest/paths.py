"""
Harness paths configuration.

Centralized lookups for the files and settings the harness depends on.
Values are read from the environment at call time so tests can override
them with monkeypatch.

Environment:
- DFU: path of the dfu-programmer binary (default: <repo>/src/dfu-programmer)
- TARGET: target device name prepended to targeted commands (default: atmega8u2)
- DFUTEST_LOCK_DIR: directory holding lock records (default: system temp dir)
"""

import os
import tempfile
from pathlib import Path

# Repository root when running from a source checkout (src/dfutest/paths.py)
REPO_ROOT = Path(__file__).resolve().parents[2]

DFU_ENV_VAR = "DFU"
TARGET_ENV_VAR = "TARGET"
LOCK_DIR_ENV_VAR = "DFUTEST_LOCK_DIR"

DEFAULT_DFU_BINARY = REPO_ROOT / "src" / "dfu-programmer"
DEFAULT_TARGET = "atmega8u2"

# Lock domain shared by every harness run that talks to the device
DEFAULT_LOCK_DOMAIN = "dfu-programmer-test"
LOCK_SUFFIX = ".lock"


def get_dfu_binary() -> Path:
    """Get the dfu-programmer binary path, honoring the DFU override.

    A relative override is taken relative to the current directory.
    """
    override = os.environ.get(DFU_ENV_VAR)
    if override:
        return Path(os.path.abspath(override))
    return DEFAULT_DFU_BINARY


def get_target() -> str:
    """Get the target device name, honoring the TARGET override."""
    return os.environ.get(TARGET_ENV_VAR) or DEFAULT_TARGET


def get_lock_dir() -> Path:
    """Get the directory that holds lock records."""
    override = os.environ.get(LOCK_DIR_ENV_VAR)
    if override:
        return Path(override)
    return Path(tempfile.gettempdir())


def lock_path_for(domain: str = DEFAULT_LOCK_DOMAIN) -> Path:
    """Map a lock domain name to its record path.

    Args:
        domain: Lock domain name. Must be a plain file name component.

    Returns:
        Path of the lock record for the domain

    Raises:
        ValueError: If the domain is empty or contains a path separator
    """
    separators = [os.sep] + ([os.altsep] if os.altsep else [])
    if not domain or domain in (".", "..") or any(sep in domain for sep in separators):
        raise ValueError(f"Invalid lock domain: {domain!r}")
    return get_lock_dir() / f"{domain}{LOCK_SUFFIX}"

"""Path resolution for simnet checkpoints and logs.

Resolution order (first match wins):
    1. SIMNET_HOME environment variable
    2. ~/.simnet.conf JSON config file  {"simnet_home": "/path/..."}
    3. Default: ~/.simnet
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger("simnet.paths")

_CONF_FILE = "~/.simnet.conf"
_DEFAULT_HOME = "~/.simnet"


def get_simnet_home(conf_path: Optional[str] = None) -> Path:
    """Return the directory under which checkpoints and logs live."""
    env_home = os.environ.get("SIMNET_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()

    configured = read_conf(conf_path)
    if configured:
        return Path(configured).expanduser().resolve()

    return Path(_DEFAULT_HOME).expanduser().resolve()


def get_checkpoint_dir(conf_path: Optional[str] = None) -> Path:
    return get_simnet_home(conf_path) / "checkpoints"


def get_checkpoint_path(name: str = "network.json", conf_path: Optional[str] = None) -> Path:
    """Return the default checkpoint file path.

    The extension picks the format: ``.msgpack`` or JSON otherwise.
    """
    return get_checkpoint_dir(conf_path) / name


def get_log_dir(conf_path: Optional[str] = None) -> Path:
    return get_simnet_home(conf_path) / "logs"


def write_conf(simnet_home: str, conf_path: Optional[str] = None) -> Path:
    """Persist the data directory so every process agrees on it.

    Args:
        simnet_home: Absolute or expandable path to the data directory.
        conf_path: Override config file location (for testing).

    Returns:
        Path to the written config file.
    """
    target = Path(conf_path or _CONF_FILE).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    data = {"simnet_home": str(Path(simnet_home).expanduser())}
    target.write_text(json.dumps(data, indent=2) + "\n")
    return target


def read_conf(conf_path: Optional[str] = None) -> Optional[str]:
    """Read the configured simnet_home, or None if unset or unreadable."""
    target = Path(conf_path or _CONF_FILE).expanduser()
    if not target.is_file():
        return None
    try:
        data = json.loads(target.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable %s: %s", target, exc)
        return None
    home = data.get("simnet_home", "")
    if not isinstance(home, str) or not home.strip():
        return None
    return home.strip()

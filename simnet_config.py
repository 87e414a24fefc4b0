"""
simnet configuration: one ``SimnetConfig`` dataclass for every tunable.

Sections:
    simulation     time step, commit policy, network seed
    neuron         defaults applied to newly created neurons
    synapse        defaults applied to newly created synapses
    randomization  global random bounds for randomize_neurons/weights
    logging        rotating JSON-lines event log settings

Usage::

    from simnet_config import load_config

    cfg = load_config()
    cfg = load_config({"simulation": {"time_step": 0.5}})
    cfg = load_config(config_path="~/.simnet/simnet.json")
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from simnet_errors import InvalidParameterError

logger = logging.getLogger("simnet.config")

COMMIT_POLICIES = ("deferred", "progressive")


# ── Section dataclasses ────────────────────────────────────────────────


@dataclass
class SimulationConfig:
    """Network clock and stepping behaviour."""

    time_step: float = 0.1
    commit_policy: str = "deferred"
    seed: Optional[int] = None


@dataclass
class NeuronDefaults:
    """Defaults for ``Network.create_neuron``."""

    update_rule: str = "Linear"
    lower_bound: float = -1.0
    upper_bound: float = 1.0
    increment: float = 0.1


@dataclass
class SynapseDefaults:
    """Defaults for ``Network.connect``."""

    strength: float = 1.0
    lower_bound: float = -10.0
    upper_bound: float = 10.0
    increment: float = 1.0
    learning_rule: str = "Static"


@dataclass
class RandomizationConfig:
    """Global bounds used by network-wide randomization."""

    lower: float = -1.0
    upper: float = 1.0


@dataclass
class LoggingConfig:
    """Event log settings used by ``simnet_monitoring.EventLogger``."""

    log_dir: Optional[str] = None
    max_log_size_mb: int = 10
    backup_count: int = 5
    level: str = "INFO"


# ── Top-level config ───────────────────────────────────────────────────


@dataclass
class SimnetConfig:
    """Top-level configuration grouping all sections.

    Use ``load_config()`` to create an instance with overrides applied.
    """

    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    neuron: NeuronDefaults = field(default_factory=NeuronDefaults)
    synapse: SynapseDefaults = field(default_factory=SynapseDefaults)
    randomization: RandomizationConfig = field(default_factory=RandomizationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Raise ``InvalidParameterError`` on out-of-domain values."""
        if self.simulation.time_step <= 0:
            raise InvalidParameterError(
                f"time_step must be > 0 (got {self.simulation.time_step})"
            )
        if self.simulation.commit_policy not in COMMIT_POLICIES:
            raise InvalidParameterError(
                f"commit_policy must be one of {COMMIT_POLICIES} "
                f"(got {self.simulation.commit_policy!r})"
            )
        if self.neuron.lower_bound > self.neuron.upper_bound:
            raise InvalidParameterError("neuron lower_bound exceeds upper_bound")
        if self.synapse.lower_bound > self.synapse.upper_bound:
            raise InvalidParameterError("synapse lower_bound exceeds upper_bound")
        if self.randomization.lower > self.randomization.upper:
            raise InvalidParameterError("randomization lower exceeds upper")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_SECTIONS = ("simulation", "neuron", "synapse", "randomization", "logging")


# ── Factory ────────────────────────────────────────────────────────────


def _apply_overrides(obj: Any, overrides: Dict[str, Any]) -> None:
    """Apply a dict of overrides to a dataclass instance (in-place)."""
    for key, value in overrides.items():
        if hasattr(obj, key):
            setattr(obj, key, value)
        else:
            logger.warning("Ignoring unknown config key %s.%s", type(obj).__name__, key)


def load_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[str] = None,
) -> SimnetConfig:
    """Create a ``SimnetConfig`` with defaults, optionally overridden.

    Override precedence (highest wins):
        1. ``overrides`` dict argument
        2. ``config_path`` JSON file
        3. Built-in defaults

    Args:
        overrides: Dict keyed by section name whose values are dicts of
            field→value pairs.
        config_path: Path to a JSON file with the same structure.

    Returns:
        Validated ``SimnetConfig``.

    Raises:
        InvalidParameterError: If the merged values are out of domain.
    """
    cfg = SimnetConfig()

    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            try:
                with open(p) as f:
                    file_data = json.load(f)
                for section in _SECTIONS:
                    if section in file_data:
                        _apply_overrides(getattr(cfg, section), file_data[section])
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Failed to load simnet config from %s: %s", p, exc)

    if overrides is not None:
        for section in _SECTIONS:
            if section in overrides:
                _apply_overrides(getattr(cfg, section), overrides[section])

    cfg.validate()
    return cfg

"""
simnet monitoring: summaries, statistics and a rotating event log.

1. ``network_summary()`` — one-line human-readable status string.
2. ``network_stats()`` — JSON-safe dict of network telemetry.
3. ``EventLogger`` — writes network events as JSON lines to
   ``<log_dir>/events.log`` with size-based rotation.

Usage::

    from simnet_monitoring import EventLogger, network_summary

    events = EventLogger(cfg)
    events.attach(net)
    net.run(100)
    print(network_summary(net))
    events.close()
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import itertools
import time
from collections import Counter
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import simnet_paths
from network_core import EVENT_TYPES, Network
from simnet_config import SimnetConfig

logger = logging.getLogger("simnet.monitoring")

# Each EventLogger writes through its own child of "simnet.events".
_event_logger_ids = itertools.count(1)


# ── Summaries ──────────────────────────────────────────────────────────


def network_stats(network: Network) -> Dict[str, Any]:
    """Telemetry plus rule usage counts, suitable for ``json.dumps``."""
    stats = asdict(network.get_telemetry())
    stats["commit_policy"] = network.commit_policy
    stats["time_step"] = network.time_step
    stats["rule_counts"] = dict(Counter(n.type_name for n in network.neurons.values()))
    return stats


def network_summary(network: Network) -> str:
    """Short status line, e.g. ``simnet: 12 neurons, 30 synapses, t=4.0``."""
    tel = network.get_telemetry()
    parts = [
        f"simnet: {tel.total_neurons:,} neurons",
        f"{tel.total_synapses:,} synapses",
        f"t={network.time:g} ({tel.time_type.lower()})",
        f"iteration {tel.iteration}",
    ]
    if tel.total_groups:
        parts.append(f"{tel.total_groups} groups")
    if tel.spiking_neurons:
        parts.append(f"{tel.spiking_neurons} spiking")
    return ", ".join(parts)


# ── Rotating event log ────────────────────────────────────────────────


def _describe(value: Any) -> Any:
    """Reduce event payload objects to JSON-safe values."""
    if hasattr(value, "id"):
        return value.id
    if hasattr(value, "rule_name"):
        return value.rule_name
    if hasattr(value, "spiked_neuron_ids"):
        return asdict(value)
    return value


class EventLogger:
    """Rotating JSON-lines log of network events.

    Args:
        config: ``SimnetConfig``; its ``logging`` section sets rotation.
        log_dir: Directory override; defaults to ``config.logging.log_dir``
            or ``simnet_paths.get_log_dir()``.
    """

    def __init__(self, config: Optional[SimnetConfig] = None, log_dir: Optional[str] = None) -> None:
        self._cfg = (config or SimnetConfig()).logging
        directory = log_dir or self._cfg.log_dir
        self.log_dir = Path(directory).expanduser() if directory else simnet_paths.get_log_dir()
        self.log_path = self.log_dir / "events.log"
        self._logger = logging.getLogger(f"simnet.events.{next(_event_logger_ids)}")
        self._handler: Optional[logging.Handler] = None
        self._subscriptions: List[Tuple[Network, str, Callable]] = []
        self._setup_handler()

    def _setup_handler(self) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            str(self.log_path),
            maxBytes=self._cfg.max_log_size_mb * 1024 * 1024,
            backupCount=self._cfg.backup_count,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        self._logger.addHandler(handler)
        self._logger.setLevel(getattr(logging, self._cfg.level.upper(), logging.INFO))
        self._handler = handler

    def log_event(self, event_type: str, data: Dict[str, Any]) -> None:
        """Write a structured event to the log."""
        event = {
            "timestamp": time.time(),
            "event": event_type,
            "data": data,
        }
        self._logger.info(json.dumps(event, default=str))

    def attach(self, network: Network, event_types=None) -> None:
        """Subscribe to ``event_types`` (all by default) on ``network``."""
        for event_type in sorted(event_types or EVENT_TYPES):
            callback = self._make_callback(event_type)
            network.register_event_handler(event_type, callback)
            self._subscriptions.append((network, event_type, callback))
        logger.debug("Event logger attached to %r", network)

    def detach(self) -> None:
        for network, event_type, callback in self._subscriptions:
            network.unregister_event_handler(event_type, callback)
        self._subscriptions.clear()

    def close(self) -> None:
        """Detach from every network and release the log file."""
        self.detach()
        if self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None

    def _make_callback(self, event_type: str) -> Callable:
        def _on_event(**kwargs: Any) -> None:
            self.log_event(event_type, {k: _describe(v) for k, v in kwargs.items()})
        return _on_event

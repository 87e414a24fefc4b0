"""
Spike responders: convert a presynaptic spike into a post-synaptic response.

A responder is owned by exactly one synapse and is only attached when the
synapse's source runs a spiking rule.  ``update(synapse)`` is called once
per network step, after every neuron has computed its buffer, and writes
``synapse.psr``.  While a responder is attached, ``Synapse.get_value()``
returns the PSR instead of ``strength × source activation``.

Variants:
    JumpAndDecay   — jump to height × strength on spike, exponential decay
    Step           — hold height × strength for a fixed duration
    RiseAndDecay   — alpha-function-like rise then decay
    Probabilistic  — transmit the spike with a fixed probability
"""

from __future__ import annotations

import copy
import math
from typing import Any, Dict, Optional

import numpy as np

from simnet_errors import InvalidParameterError
from update_rules import generator_state, set_generator_state


def _check_time_constant(value: float) -> None:
    if value <= 0:
        raise InvalidParameterError(f"time_constant must be > 0 (got {value})")


class SpikeResponder:
    """Base class for spike responders.

    Subclass and override ``update``.
    """

    responder_name = "SpikeResponder"

    def update(self, synapse) -> None:
        raise NotImplementedError

    def get_params(self) -> Dict[str, Any]:
        return {}

    def get_state(self) -> Dict[str, Any]:
        return {}

    def set_state(self, state: Dict[str, Any]) -> None:
        for key, value in state.items():
            setattr(self, key, value)

    def deep_copy(self) -> "SpikeResponder":
        return type(self)(**self.get_params())

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v!r}" for k, v in self.get_params().items())
        return f"{type(self).__name__}({params})"


class JumpAndDecay(SpikeResponder):
    """Jump to ``jump_height × strength`` on a spike, otherwise decay.

        psr ← psr + dt · (base_line − psr) / time_constant
    """

    responder_name = "JumpAndDecay"

    def __init__(
        self,
        jump_height: float = 1.0,
        base_line: float = 0.0001,
        time_constant: float = 3.0,
    ):
        _check_time_constant(time_constant)
        self.jump_height = jump_height
        self.base_line = base_line
        self.time_constant = time_constant

    def update(self, synapse) -> None:
        _check_time_constant(self.time_constant)
        if synapse.source.is_spike:
            synapse.psr = self.jump_height * synapse.strength
        else:
            dt = synapse.network.time_step
            synapse.psr += dt * (self.base_line - synapse.psr) / self.time_constant

    def get_params(self) -> Dict[str, Any]:
        return {
            "jump_height": self.jump_height,
            "base_line": self.base_line,
            "time_constant": self.time_constant,
        }


class Step(SpikeResponder):
    """Square pulse: ``response_height × strength`` for ``response_duration``."""

    responder_name = "Step"

    def __init__(self, response_height: float = 1.0, response_duration: float = 1.0):
        if response_duration < 0:
            raise InvalidParameterError(
                f"response_duration must be >= 0 (got {response_duration})"
            )
        self.response_height = response_height
        self.response_duration = response_duration
        self.last_spike_time = -math.inf

    def update(self, synapse) -> None:
        now = synapse.network.time
        spiked = synapse.source.is_spike
        if spiked:
            self.last_spike_time = now
        if spiked or now - self.last_spike_time < self.response_duration:
            synapse.psr = self.response_height * synapse.strength
        else:
            synapse.psr = 0.0

    def get_state(self) -> Dict[str, Any]:
        lst = self.last_spike_time
        return {"last_spike_time": None if math.isinf(lst) else lst}

    def set_state(self, state: Dict[str, Any]) -> None:
        lst = state.get("last_spike_time")
        self.last_spike_time = -math.inf if lst is None else lst

    def get_params(self) -> Dict[str, Any]:
        return {
            "response_height": self.response_height,
            "response_duration": self.response_duration,
        }


class RiseAndDecay(SpikeResponder):
    """Alpha-function-shaped response peaking near ``maximum_response``.

    A spike resets the recovery variable to 1; the PSR relaxes toward
    ``e × maximum_response × strength × recovery`` while recovery decays.
    """

    responder_name = "RiseAndDecay"

    def __init__(self, maximum_response: float = 1.0, time_constant: float = 3.0):
        _check_time_constant(time_constant)
        self.maximum_response = maximum_response
        self.time_constant = time_constant
        self.recovery = 0.0

    def update(self, synapse) -> None:
        _check_time_constant(self.time_constant)
        dt = synapse.network.time_step
        if synapse.source.is_spike:
            self.recovery = 1.0
        self.recovery += dt / self.time_constant * -self.recovery
        target = math.e * self.maximum_response * synapse.strength * self.recovery
        synapse.psr += dt / self.time_constant * (target - synapse.psr)

    def get_state(self) -> Dict[str, Any]:
        return {"recovery": self.recovery}

    def get_params(self) -> Dict[str, Any]:
        return {
            "maximum_response": self.maximum_response,
            "time_constant": self.time_constant,
        }


class Probabilistic(SpikeResponder):
    """Transmits a spike with probability ``activation_probability``."""

    responder_name = "Probabilistic"

    def __init__(
        self,
        activation_probability: float = 0.5,
        response_height: float = 1.0,
        seed: Optional[int] = None,
    ):
        if not 0.0 <= activation_probability <= 1.0:
            raise InvalidParameterError(
                f"activation_probability must be in [0, 1] (got {activation_probability})"
            )
        self.activation_probability = activation_probability
        self.response_height = response_height
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def update(self, synapse) -> None:
        if synapse.source.is_spike and self._rng.random() < self.activation_probability:
            synapse.psr = self.response_height * synapse.strength
        else:
            synapse.psr = 0.0

    def deep_copy(self) -> "Probabilistic":
        clone = super().deep_copy()
        clone._rng = copy.deepcopy(self._rng)
        return clone

    def get_state(self) -> Dict[str, Any]:
        return {"rng": generator_state(self._rng)}

    def set_state(self, state: Dict[str, Any]) -> None:
        if "rng" in state:
            set_generator_state(self._rng, state["rng"])

    def get_params(self) -> Dict[str, Any]:
        return {
            "activation_probability": self.activation_probability,
            "response_height": self.response_height,
            "seed": self.seed,
        }


BUILTIN_RESPONDERS = (JumpAndDecay, Step, RiseAndDecay, Probabilistic)

"""
Synapse learning rules: pluggable strategy objects that adjust strength.

A learning rule is owned by exactly one synapse.  ``apply(synapse)`` runs
once per network step, after every neuron buffer has been computed but
before any is committed, so it sees the same pre-step activations as the
neuron rules did.  Clamped synapses skip their learning rule entirely.

Variants:
    Static   — no learning (the default)
    Hebbian  — Δw = η · pre · post
    Oja      — Δw = η · post · (pre − post · w)
    STDP     — pair-based spike-timing-dependent plasticity
"""

from __future__ import annotations

import math
from typing import Any, Dict

from update_rules import SpikingRule, _require_positive


class SynapseUpdateRule:
    """Base class for synapse learning rules.

    Subclass and override ``apply``.
    """

    rule_name = "SynapseUpdateRule"

    def apply(self, synapse) -> None:
        raise NotImplementedError

    def get_params(self) -> Dict[str, Any]:
        return {}

    def get_state(self) -> Dict[str, Any]:
        return {}

    def set_state(self, state: Dict[str, Any]) -> None:
        for key, value in state.items():
            setattr(self, key, value)

    def deep_copy(self) -> "SynapseUpdateRule":
        return type(self)(**self.get_params())

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v!r}" for k, v in self.get_params().items())
        return f"{type(self).__name__}({params})"


class StaticRule(SynapseUpdateRule):
    """Weight never changes."""

    rule_name = "Static"

    def apply(self, synapse) -> None:
        return None


class HebbianRule(SynapseUpdateRule):
    """Plain Hebbian learning, clipped to the synapse bounds."""

    rule_name = "Hebbian"

    def __init__(self, learning_rate: float = 0.01):
        self.learning_rate = learning_rate

    def apply(self, synapse) -> None:
        pre = synapse.source.activation
        post = synapse.target.activation
        synapse.strength = synapse.clip(
            synapse.strength + self.learning_rate * pre * post
        )

    def get_params(self) -> Dict[str, Any]:
        return {"learning_rate": self.learning_rate}


class OjaRule(SynapseUpdateRule):
    """Oja's rule: Hebbian growth with a normalising decay term.

    The fixed point keeps the incoming weight vector near unit length, so
    weights stay bounded without hard clipping in the typical case.
    """

    rule_name = "Oja"

    def __init__(self, learning_rate: float = 0.01):
        self.learning_rate = learning_rate

    def apply(self, synapse) -> None:
        pre = synapse.source.activation
        post = synapse.target.activation
        w = synapse.strength
        synapse.strength = synapse.clip(
            w + self.learning_rate * post * (pre - post * w)
        )

    def get_params(self) -> Dict[str, Any]:
        return {"learning_rate": self.learning_rate}


class STDPRule(SynapseUpdateRule):
    """Pair-based STDP between two spiking neurons.

        LTP (pre before post, Δt > 0):
            Δw = A_plus × exp(−Δt / τ_plus) × learning_rate × soft bound
        LTD (pre after post, Δt < 0):
            Δw = −A_minus × exp(Δt / τ_minus) × learning_rate

    The soft bound is ``(upper − w) / (upper − lower)`` so potentiation
    slows as the weight approaches its ceiling.  Coincident spikes
    (Δt = 0) count as LTP at half strength.  The rule only acts on steps
    where one of the endpoints spiked; synapses whose endpoints are not
    both spiking are left alone.
    """

    rule_name = "STDP"

    def __init__(
        self,
        tau_plus: float = 20.0,
        tau_minus: float = 20.0,
        A_plus: float = 1.0,
        A_minus: float = 1.2,
        learning_rate: float = 0.01,
    ):
        _require_positive("tau_plus", tau_plus)
        _require_positive("tau_minus", tau_minus)
        self.tau_plus = tau_plus
        self.tau_minus = tau_minus
        self.A_plus = A_plus
        self.A_minus = A_minus
        self.learning_rate = learning_rate

    def apply(self, synapse) -> None:
        pre = synapse.source.update_rule
        post = synapse.target.update_rule
        if not (isinstance(pre, SpikingRule) and isinstance(post, SpikingRule)):
            return
        if not (pre.has_spiked or post.has_spiked):
            return
        if math.isinf(pre.last_spike_time) or math.isinf(post.last_spike_time):
            return

        dt = post.last_spike_time - pre.last_spike_time
        span = synapse.upper_bound - synapse.lower_bound
        soft = max((synapse.upper_bound - synapse.strength) / span, 0.0) if span > 0 else 0.0
        if dt > 0:
            dw = self.A_plus * math.exp(-dt / self.tau_plus) * self.learning_rate * soft
        elif dt < 0:
            dw = -self.A_minus * math.exp(dt / self.tau_minus) * self.learning_rate
        else:
            dw = self.A_plus * 0.5 * self.learning_rate * soft
        synapse.strength = synapse.clip(synapse.strength + dw)

    def get_params(self) -> Dict[str, Any]:
        return {
            "tau_plus": self.tau_plus,
            "tau_minus": self.tau_minus,
            "A_plus": self.A_plus,
            "A_minus": self.A_minus,
            "learning_rate": self.learning_rate,
        }


BUILTIN_SYNAPSE_RULES = (StaticRule, HebbianRule, OjaRule, STDPRule)

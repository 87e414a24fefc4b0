"""
Neuron update rules: pluggable per-neuron numeric behaviour.

Every rule follows the same contract:

    init(neuron)             called whenever the rule is (re)assigned
    update(neuron)           compute the *next* activation into neuron.buffer
    clear(neuron)            return to the rule's rest state
    get_random_value(rng)    sample from the rule's natural operating range
    deep_copy()              independent instance with identical parameters
    time_type                DISCRETE or CONTINUOUS

``update`` never writes ``neuron.activation``.  The network commits buffers
after every neuron has been evaluated, so a rule sees the same pre-step
activations regardless of the order neurons are visited in.

Capability traits are mixins checked with ``isinstance``:
    BiasedRule   — contributes ``bias`` to Neuron.get_weighted_inputs()
    NoisyRule    — owns a Randomizer sampled when ``add_noise`` is set
    SpikingRule  — exposes ``has_spiked`` / ``last_spike_time``

Rule variants are ordered roughly by complexity:
    Linear, Binary, ThreeValue, Clamped, Decay, Logistic, Sigmoidal,
    Stochastic, Random, Additive, NakaRushton, Point,
    SpikingThreshold, IntegrateAndFire, Izhikevich

Izhikevich dynamics follow Izhikevich (2003), "Simple model of spiking
neurons", integrated with explicit forward Euler at the network time step.
"""

from __future__ import annotations

import copy
import math
from enum import Enum, auto
from typing import Any, Dict, Optional

import numpy as np

from simnet_errors import InvalidParameterError


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class TimeType(Enum):
    """How network time advances: unit steps or scaled continuous steps."""
    DISCRETE = auto()
    CONTINUOUS = auto()


def _require_positive(name: str, value: float) -> None:
    if value <= 0:
        raise InvalidParameterError(f"{name} must be > 0 (got {value})")


def _require_probability(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise InvalidParameterError(f"{name} must be in [0, 1] (got {value})")


def generator_state(rng: np.random.Generator) -> Dict[str, Any]:
    """Bit-generator state as a JSON- and msgpack-safe dict.

    PCG64 carries 128-bit integers, which msgpack cannot encode, so the
    inner ``state`` values are stored as decimal strings.
    """
    state = rng.bit_generator.state
    return {
        "bit_generator": state["bit_generator"],
        "state": {k: str(v) for k, v in state["state"].items()},
        "has_uint32": state["has_uint32"],
        "uinteger": state["uinteger"],
    }


def set_generator_state(rng: np.random.Generator, data: Dict[str, Any]) -> None:
    """Inverse of ``generator_state``."""
    rng.bit_generator.state = {
        "bit_generator": data["bit_generator"],
        "state": {k: int(v) for k, v in data["state"].items()},
        "has_uint32": data["has_uint32"],
        "uinteger": data["uinteger"],
    }


# ---------------------------------------------------------------------------
# Randomizer (noise generator)
# ---------------------------------------------------------------------------

class Randomizer:
    """Seedable noise source owned by a single rule.

    Each instance carries its own ``numpy.random.Generator``.  Copies made
    with ``deep_copy`` continue from the same generator state but never
    share it, so two copies produce identical, independent streams.

    Args:
        distribution: ``"uniform"`` or ``"normal"``.
        lower / upper: Uniform range, and the clip range for normal samples.
        mean / std_dev: Normal distribution parameters.
        clipping: Clip normal samples into ``[lower, upper]``.
        seed: Optional seed for reproducible streams.
    """

    DISTRIBUTIONS = ("uniform", "normal")

    def __init__(
        self,
        distribution: str = "uniform",
        lower: float = -1.0,
        upper: float = 1.0,
        mean: float = 0.0,
        std_dev: float = 1.0,
        clipping: bool = False,
        seed: Optional[int] = None,
    ):
        if distribution not in self.DISTRIBUTIONS:
            raise InvalidParameterError(
                f"Unknown distribution '{distribution}' "
                f"(expected one of {self.DISTRIBUTIONS})"
            )
        if lower > upper:
            raise InvalidParameterError(
                f"Randomizer lower bound {lower} exceeds upper bound {upper}"
            )
        if std_dev < 0:
            raise InvalidParameterError(f"std_dev must be >= 0 (got {std_dev})")
        self.distribution = distribution
        self.lower = lower
        self.upper = upper
        self.mean = mean
        self.std_dev = std_dev
        self.clipping = clipping
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def get_random(self) -> float:
        if self.distribution == "uniform":
            return float(self._rng.uniform(self.lower, self.upper))
        value = float(self._rng.normal(self.mean, self.std_dev))
        if self.clipping:
            value = min(max(value, self.lower), self.upper)
        return value

    def reseed(self, seed: Optional[int]) -> None:
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def deep_copy(self) -> "Randomizer":
        return copy.deepcopy(self)

    def get_state(self) -> Dict[str, Any]:
        return generator_state(self._rng)

    def set_state(self, state: Dict[str, Any]) -> None:
        set_generator_state(self._rng, state)

    def get_params(self) -> Dict[str, Any]:
        return {
            "distribution": self.distribution,
            "lower": self.lower,
            "upper": self.upper,
            "mean": self.mean,
            "std_dev": self.std_dev,
            "clipping": self.clipping,
            "seed": self.seed,
        }

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "Randomizer":
        return cls(**params)

    def __repr__(self) -> str:
        return f"Randomizer({self.distribution}, seed={self.seed})"


# ---------------------------------------------------------------------------
# Rule base class and capability traits
# ---------------------------------------------------------------------------

class NeuronUpdateRule:
    """Base class for neuron update rules.

    Subclass and override ``update``.  Parameters must be accepted as
    constructor keyword arguments and reported back by ``get_params`` so
    that ``deep_copy`` and persistence can rebuild the rule.
    """

    rule_name = "NeuronUpdateRule"
    time_type = TimeType.DISCRETE
    # Whether Neuron.randomize() clips the sampled value into bounds.
    bounded = True

    def init(self, neuron) -> None:
        """Per-neuron setup, called whenever the rule is assigned."""

    def update(self, neuron) -> None:
        raise NotImplementedError

    def clear(self, neuron) -> None:
        neuron.activation = 0.0
        neuron.buffer = 0.0

    def get_random_value(self, rng: Optional[np.random.Generator] = None) -> float:
        rng = rng if rng is not None else np.random.default_rng()
        return float(rng.uniform(-1.0, 1.0))

    def get_params(self) -> Dict[str, Any]:
        return {}

    def get_state(self) -> Dict[str, Any]:
        """Dynamic per-neuron state (not parameters) for checkpointing."""
        return {}

    def set_state(self, state: Dict[str, Any]) -> None:
        for key, value in state.items():
            setattr(self, key, value)

    def deep_copy(self) -> "NeuronUpdateRule":
        return type(self)(**self.get_params())

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v!r}" for k, v in self.get_params().items())
        return f"{type(self).__name__}({params})"


class BiasedRule:
    """Trait: rule exposes a bias folded into the weighted input."""

    bias: float = 0.0


class NoisyRule:
    """Trait: rule owns a noise generator added to its forcing term."""

    add_noise: bool = False
    noise_generator: Randomizer

    def _init_noise(self, add_noise: bool, noise_generator: Optional[Randomizer]) -> None:
        self.add_noise = add_noise
        self.noise_generator = noise_generator if noise_generator is not None else Randomizer()

    def noise(self) -> float:
        return self.noise_generator.get_random() if self.add_noise else 0.0

    def deep_copy(self):
        clone = super().deep_copy()
        clone.noise_generator = self.noise_generator.deep_copy()
        return clone


class SpikingRule(NeuronUpdateRule):
    """Base for rules that emit discrete spike events.

    ``has_spiked`` is set during ``update`` and read by spike responders on
    the same step.  ``last_spike_time`` is the network time at which the
    most recent spike was computed.
    """

    time_type = TimeType.CONTINUOUS
    bounded = False

    def __init__(self, refractory_period: float = 0.0):
        if refractory_period < 0:
            raise InvalidParameterError(
                f"refractory_period must be >= 0 (got {refractory_period})"
            )
        self.refractory_period = refractory_period
        self.has_spiked = False
        self.last_spike_time = -math.inf

    def set_has_spiked(self, spiked: bool, neuron) -> None:
        self.has_spiked = spiked
        if spiked:
            self.last_spike_time = neuron.network.time

    def in_refractory(self, neuron) -> bool:
        if self.refractory_period <= 0:
            return False
        return neuron.network.time - self.last_spike_time < self.refractory_period

    def clear(self, neuron) -> None:
        super().clear(neuron)
        self.has_spiked = False
        self.last_spike_time = -math.inf

    def get_state(self) -> Dict[str, Any]:
        return {
            "has_spiked": self.has_spiked,
            "last_spike_time": (
                None if math.isinf(self.last_spike_time) else self.last_spike_time
            ),
        }

    def set_state(self, state: Dict[str, Any]) -> None:
        state = dict(state)
        lst = state.pop("last_spike_time", None)
        self.last_spike_time = -math.inf if lst is None else lst
        super().set_state(state)


# ---------------------------------------------------------------------------
# Simple discrete rules
# ---------------------------------------------------------------------------

class LinearRule(NoisyRule, BiasedRule, NeuronUpdateRule):
    """activation = slope × weighted input (+ noise), optionally clipped."""

    rule_name = "Linear"

    def __init__(
        self,
        slope: float = 1.0,
        bias: float = 0.0,
        clipping: bool = True,
        add_noise: bool = False,
        noise_generator: Optional[Randomizer] = None,
    ):
        self.slope = slope
        self.bias = bias
        self.clipping = clipping
        self._init_noise(add_noise, noise_generator)

    @property
    def bounded(self) -> bool:
        return self.clipping

    def update(self, neuron) -> None:
        val = self.slope * neuron.get_weighted_inputs() + self.noise()
        if self.clipping:
            val = neuron.clip(val)
        neuron.buffer = val

    def get_params(self) -> Dict[str, Any]:
        return {
            "slope": self.slope,
            "bias": self.bias,
            "clipping": self.clipping,
            "add_noise": self.add_noise,
        }


class BinaryRule(BiasedRule, NeuronUpdateRule):
    """Upper bound when weighted input exceeds threshold, else lower bound."""

    rule_name = "Binary"

    def __init__(self, threshold: float = 0.5, bias: float = 0.0):
        self.threshold = threshold
        self.bias = bias

    def update(self, neuron) -> None:
        if neuron.get_weighted_inputs() > self.threshold:
            neuron.buffer = neuron.upper_bound
        else:
            neuron.buffer = neuron.lower_bound

    def get_params(self) -> Dict[str, Any]:
        return {"threshold": self.threshold, "bias": self.bias}


class ThreeValueRule(BiasedRule, NeuronUpdateRule):
    """Three output levels split by two thresholds."""

    rule_name = "ThreeValue"

    def __init__(
        self,
        bias: float = 0.0,
        lower_threshold: float = 0.0,
        upper_threshold: float = 1.0,
        lower_value: float = -1.0,
        middle_value: float = 0.0,
        upper_value: float = 1.0,
    ):
        if lower_threshold > upper_threshold:
            raise InvalidParameterError(
                f"lower_threshold {lower_threshold} exceeds "
                f"upper_threshold {upper_threshold}"
            )
        self.bias = bias
        self.lower_threshold = lower_threshold
        self.upper_threshold = upper_threshold
        self.lower_value = lower_value
        self.middle_value = middle_value
        self.upper_value = upper_value

    def update(self, neuron) -> None:
        wtd = neuron.get_weighted_inputs()
        if wtd < self.lower_threshold:
            neuron.buffer = self.lower_value
        elif wtd > self.upper_threshold:
            neuron.buffer = self.upper_value
        else:
            neuron.buffer = self.middle_value

    def get_params(self) -> Dict[str, Any]:
        return {
            "bias": self.bias,
            "lower_threshold": self.lower_threshold,
            "upper_threshold": self.upper_threshold,
            "lower_value": self.lower_value,
            "middle_value": self.middle_value,
            "upper_value": self.upper_value,
        }


class ClampedRule(NeuronUpdateRule):
    """Holds the current activation; only external writes change it."""

    rule_name = "Clamped"

    def update(self, neuron) -> None:
        neuron.buffer = neuron.activation


class DecayRule(NeuronUpdateRule):
    """Adds weighted input, then decays toward ``base_line``.

    Absolute mode subtracts ``decay_amount`` per step; relative mode
    subtracts ``decay_fraction`` of the distance to the base line.  Decay
    never overshoots the base line.
    """

    rule_name = "Decay"

    def __init__(
        self,
        relative: bool = False,
        decay_amount: float = 0.1,
        decay_fraction: float = 0.1,
        base_line: float = 0.0,
        clipping: bool = True,
    ):
        if decay_amount < 0:
            raise InvalidParameterError(f"decay_amount must be >= 0 (got {decay_amount})")
        _require_probability("decay_fraction", decay_fraction)
        self.relative = relative
        self.decay_amount = decay_amount
        self.decay_fraction = decay_fraction
        self.base_line = base_line
        self.clipping = clipping

    @property
    def bounded(self) -> bool:
        return self.clipping

    def update(self, neuron) -> None:
        val = neuron.activation + neuron.get_weighted_inputs()
        if self.relative:
            decrement = self.decay_fraction * abs(val - self.base_line)
        else:
            decrement = self.decay_amount
        if val < self.base_line:
            val = min(val + decrement, self.base_line)
        elif val > self.base_line:
            val = max(val - decrement, self.base_line)
        if self.clipping:
            val = neuron.clip(val)
        neuron.buffer = val

    def get_params(self) -> Dict[str, Any]:
        return {
            "relative": self.relative,
            "decay_amount": self.decay_amount,
            "decay_fraction": self.decay_fraction,
            "base_line": self.base_line,
            "clipping": self.clipping,
        }


class LogisticRule(NeuronUpdateRule):
    """Logistic map x' = r·x·(1 − x) on the activation normalised to bounds.

    Chaotic for growth rates above ~3.57.
    """

    rule_name = "Logistic"

    def __init__(self, growth_rate: float = 3.9):
        if not 0.0 <= growth_rate <= 4.0:
            raise InvalidParameterError(
                f"growth_rate must be in [0, 4] (got {growth_rate})"
            )
        self.growth_rate = growth_rate

    def update(self, neuron) -> None:
        span = neuron.upper_bound - neuron.lower_bound
        if span <= 0:
            raise InvalidParameterError(
                f"Logistic rule needs upper_bound > lower_bound on neuron {neuron.id}"
            )
        y = (neuron.activation - neuron.lower_bound) / span
        y = self.growth_rate * y * (1.0 - y)
        neuron.buffer = span * y + neuron.lower_bound

    def get_random_value(self, rng: Optional[np.random.Generator] = None) -> float:
        rng = rng if rng is not None else np.random.default_rng()
        return float(rng.uniform(0.0, 1.0))

    def get_params(self) -> Dict[str, Any]:
        return {"growth_rate": self.growth_rate}


class SigmoidalRule(NoisyRule, BiasedRule, NeuronUpdateRule):
    """Squashes weighted input into [lower_bound, upper_bound].

    ``implementation`` selects the squashing function: ``logistic``,
    ``tanh`` or ``arctan``.
    """

    rule_name = "Sigmoidal"
    IMPLEMENTATIONS = ("logistic", "tanh", "arctan")

    def __init__(
        self,
        implementation: str = "logistic",
        slope: float = 1.0,
        bias: float = 0.0,
        add_noise: bool = False,
        noise_generator: Optional[Randomizer] = None,
    ):
        if implementation not in self.IMPLEMENTATIONS:
            raise InvalidParameterError(
                f"Unknown sigmoid implementation '{implementation}' "
                f"(expected one of {self.IMPLEMENTATIONS})"
            )
        self.implementation = implementation
        self.slope = slope
        self.bias = bias
        self._init_noise(add_noise, noise_generator)

    @staticmethod
    def _logistic(z: float) -> float:
        # Split on sign so exp() never overflows.
        if z >= 0:
            return 1.0 / (1.0 + math.exp(-z))
        ez = math.exp(z)
        return ez / (1.0 + ez)

    def update(self, neuron) -> None:
        z = self.slope * neuron.get_weighted_inputs()
        lo, hi = neuron.lower_bound, neuron.upper_bound
        if self.implementation == "logistic":
            val = (hi - lo) * self._logistic(z) + lo
        elif self.implementation == "tanh":
            val = (hi - lo) / 2.0 * math.tanh(z) + (hi + lo) / 2.0
        else:
            val = (hi - lo) / math.pi * math.atan(z) + (hi + lo) / 2.0
        neuron.buffer = val + self.noise()

    def get_params(self) -> Dict[str, Any]:
        return {
            "implementation": self.implementation,
            "slope": self.slope,
            "bias": self.bias,
            "add_noise": self.add_noise,
        }


class StochasticRule(NeuronUpdateRule):
    """Upper bound with probability ``firing_probability``, else lower bound.

    The rule owns its generator; seed it for reproducible runs.
    """

    rule_name = "Stochastic"

    def __init__(self, firing_probability: float = 0.5, seed: Optional[int] = None):
        _require_probability("firing_probability", firing_probability)
        self.firing_probability = firing_probability
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def update(self, neuron) -> None:
        if self._rng.random() < self.firing_probability:
            neuron.buffer = neuron.upper_bound
        else:
            neuron.buffer = neuron.lower_bound

    def deep_copy(self) -> "StochasticRule":
        clone = super().deep_copy()
        clone._rng = copy.deepcopy(self._rng)
        return clone

    def get_state(self) -> Dict[str, Any]:
        return {"rng": generator_state(self._rng)}

    def set_state(self, state: Dict[str, Any]) -> None:
        if "rng" in state:
            set_generator_state(self._rng, state["rng"])

    def get_params(self) -> Dict[str, Any]:
        return {"firing_probability": self.firing_probability, "seed": self.seed}


class RandomRule(NoisyRule, NeuronUpdateRule):
    """Activation is a fresh sample from the rule's Randomizer every step."""

    rule_name = "Random"

    def __init__(self, noise_generator: Optional[Randomizer] = None):
        self._init_noise(True, noise_generator)

    def update(self, neuron) -> None:
        neuron.buffer = self.noise_generator.get_random()

    def get_random_value(self, rng: Optional[np.random.Generator] = None) -> float:
        return self.noise_generator.get_random()


# ---------------------------------------------------------------------------
# Continuous-time rate rules
# ---------------------------------------------------------------------------

class AdditiveRule(NoisyRule, NeuronUpdateRule):
    """Grossberg-style additive neuron.

        a' = a + dt·(−a/resistance + I + Σ w·(2/π)·atan(π·λ·x/2))

    The sum runs over fan-in synapses that send weighted input, using the
    source activation ``x`` passed through the arctan squashing function.
    """

    rule_name = "Additive"
    time_type = TimeType.CONTINUOUS

    def __init__(
        self,
        lambda_: float = 1.4,
        resistance: float = 1.0,
        clipping: bool = True,
        add_noise: bool = False,
        noise_generator: Optional[Randomizer] = None,
    ):
        _require_positive("resistance", resistance)
        self.lambda_ = lambda_
        self.resistance = resistance
        self.clipping = clipping
        self._init_noise(add_noise, noise_generator)

    @property
    def bounded(self) -> bool:
        return self.clipping

    def update(self, neuron) -> None:
        _require_positive("resistance", self.resistance)
        dt = neuron.network.time_step
        wtd = neuron.input_value
        for syn in neuron.fan_in:
            if syn.send_weighted_input:
                x = syn.source.activation
                wtd += syn.strength * (2.0 / math.pi) * math.atan(
                    math.pi * self.lambda_ * x / 2.0
                )
        act = neuron.activation
        val = act + dt * (-act / self.resistance + wtd) + self.noise()
        if self.clipping:
            val = neuron.clip(val)
        neuron.buffer = val

    def get_params(self) -> Dict[str, Any]:
        return {
            "lambda_": self.lambda_,
            "resistance": self.resistance,
            "clipping": self.clipping,
            "add_noise": self.add_noise,
        }


class NakaRushtonRule(NoisyRule, NeuronUpdateRule):
    """Naka-Rushton rate neuron (Wilson 1999, ch. 2) with optional adaptation.

        S(P) = M·P^N / ((σ + A)^N + P^N)   for P > 0, else 0
        a'   = a + dt/τ · (−a + S(P))
        A'   = A + dt/τ_A · (−A + α·a)     when adaptation is enabled

    ``M`` is the neuron's upper bound.
    """

    rule_name = "NakaRushton"
    time_type = TimeType.CONTINUOUS

    def __init__(
        self,
        steepness: float = 2.0,
        semi_saturation: float = 120.0,
        time_constant: float = 15.0,
        use_adaptation: bool = False,
        adaptation_parameter: float = 0.7,
        adaptation_time_constant: float = 100.0,
        add_noise: bool = False,
        noise_generator: Optional[Randomizer] = None,
    ):
        _require_positive("time_constant", time_constant)
        _require_positive("adaptation_time_constant", adaptation_time_constant)
        self.steepness = steepness
        self.semi_saturation = semi_saturation
        self.time_constant = time_constant
        self.use_adaptation = use_adaptation
        self.adaptation_parameter = adaptation_parameter
        self.adaptation_time_constant = adaptation_time_constant
        self.adaptation = 0.0
        self._init_noise(add_noise, noise_generator)

    def update(self, neuron) -> None:
        _require_positive("time_constant", self.time_constant)
        dt = neuron.network.time_step
        p = neuron.get_weighted_inputs() + self.noise()
        s = 0.0
        if p > 0:
            pn = p ** self.steepness
            s = neuron.upper_bound * pn / (
                (self.semi_saturation + self.adaptation) ** self.steepness + pn
            )
        act = neuron.activation
        if self.use_adaptation:
            self.adaptation += (dt / self.adaptation_time_constant) * (
                -self.adaptation + self.adaptation_parameter * act
            )
        neuron.buffer = act + (dt / self.time_constant) * (-act + s)

    def clear(self, neuron) -> None:
        super().clear(neuron)
        self.adaptation = 0.0

    def get_random_value(self, rng: Optional[np.random.Generator] = None) -> float:
        rng = rng if rng is not None else np.random.default_rng()
        return float(rng.uniform(0.0, 1.0))

    def get_state(self) -> Dict[str, Any]:
        return {"adaptation": self.adaptation}

    def get_params(self) -> Dict[str, Any]:
        return {
            "steepness": self.steepness,
            "semi_saturation": self.semi_saturation,
            "time_constant": self.time_constant,
            "use_adaptation": self.use_adaptation,
            "adaptation_parameter": self.adaptation_parameter,
            "adaptation_time_constant": self.adaptation_time_constant,
            "add_noise": self.add_noise,
        }


class PointNeuronRule(NeuronUpdateRule):
    """Point-conductance neuron (O'Reilly & Munakata 2000, ch. 2).

    Excitatory conductance is the mean of ``strength × source activation``
    over positive-strength fan-in synapses plus any positive external
    input.  Inhibitory conductance is the mean magnitude over negative
    synapses.  A neuron with no synapses of a given sign gets conductance 0
    for that channel.

        v' = v + dt/C · (g_e·ḡ_e·(E_e − v) + g_i·ḡ_i·(E_i − v) + g_l·(E_l − v))
        x  = gain · max(v − θ, 0)
        a  = x / (x + 1)
    """

    rule_name = "Point"
    time_type = TimeType.CONTINUOUS

    def __init__(
        self,
        excitatory_reversal: float = 1.0,
        inhibitory_reversal: float = 0.15,
        leak_reversal: float = 0.15,
        excitatory_max_conductance: float = 0.4,
        inhibitory_max_conductance: float = 1.0,
        leak_conductance: float = 0.1,
        membrane_capacitance: float = 1.0,
        threshold: float = 0.25,
        gain: float = 600.0,
    ):
        _require_positive("membrane_capacitance", membrane_capacitance)
        self.excitatory_reversal = excitatory_reversal
        self.inhibitory_reversal = inhibitory_reversal
        self.leak_reversal = leak_reversal
        self.excitatory_max_conductance = excitatory_max_conductance
        self.inhibitory_max_conductance = inhibitory_max_conductance
        self.leak_conductance = leak_conductance
        self.membrane_capacitance = membrane_capacitance
        self.threshold = threshold
        self.gain = gain
        self.membrane_potential = leak_reversal

    def init(self, neuron) -> None:
        self.membrane_potential = self.leak_reversal

    def conductances(self, neuron):
        """Return (excitatory, inhibitory) input conductances."""
        excitatory = []
        inhibitory = []
        for syn in neuron.fan_in:
            if not syn.send_weighted_input:
                continue
            drive = syn.strength * syn.source.activation
            if syn.strength > 0:
                excitatory.append(drive)
            elif syn.strength < 0:
                inhibitory.append(-drive)
        g_e = float(np.mean(excitatory)) if excitatory else 0.0
        g_i = float(np.mean(inhibitory)) if inhibitory else 0.0
        return g_e + max(neuron.input_value, 0.0), g_i

    def update(self, neuron) -> None:
        _require_positive("membrane_capacitance", self.membrane_capacitance)
        dt = neuron.network.time_step
        g_e, g_i = self.conductances(neuron)
        v = self.membrane_potential
        current = (
            g_e * self.excitatory_max_conductance * (self.excitatory_reversal - v)
            + g_i * self.inhibitory_max_conductance * (self.inhibitory_reversal - v)
            + self.leak_conductance * (self.leak_reversal - v)
        )
        self.membrane_potential = v + dt / self.membrane_capacitance * current
        x = self.gain * max(self.membrane_potential - self.threshold, 0.0)
        neuron.buffer = x / (x + 1.0)

    def clear(self, neuron) -> None:
        super().clear(neuron)
        self.membrane_potential = self.leak_reversal

    def get_random_value(self, rng: Optional[np.random.Generator] = None) -> float:
        rng = rng if rng is not None else np.random.default_rng()
        return float(rng.uniform(0.0, 1.0))

    def get_state(self) -> Dict[str, Any]:
        return {"membrane_potential": self.membrane_potential}

    def get_params(self) -> Dict[str, Any]:
        return {
            "excitatory_reversal": self.excitatory_reversal,
            "inhibitory_reversal": self.inhibitory_reversal,
            "leak_reversal": self.leak_reversal,
            "excitatory_max_conductance": self.excitatory_max_conductance,
            "inhibitory_max_conductance": self.inhibitory_max_conductance,
            "leak_conductance": self.leak_conductance,
            "membrane_capacitance": self.membrane_capacitance,
            "threshold": self.threshold,
            "gain": self.gain,
        }


# ---------------------------------------------------------------------------
# Spiking rules
# ---------------------------------------------------------------------------

class SpikingThresholdRule(SpikingRule):
    """Spikes (activation 1) whenever weighted input reaches threshold."""

    rule_name = "SpikingThreshold"
    time_type = TimeType.DISCRETE
    bounded = True

    def __init__(self, threshold: float = 0.5):
        super().__init__()
        self.threshold = threshold

    def update(self, neuron) -> None:
        if neuron.get_weighted_inputs() >= self.threshold:
            self.set_has_spiked(True, neuron)
            neuron.buffer = 1.0
        else:
            self.set_has_spiked(False, neuron)
            neuron.buffer = 0.0

    def get_params(self) -> Dict[str, Any]:
        return {"threshold": self.threshold}


class IntegrateAndFireRule(NoisyRule, SpikingRule):
    """Leaky integrate-and-fire neuron with an absolute refractory period.

        v' = v + dt/τ · (R·(I + I_bg) − (v − v_rest))

    On reaching ``threshold`` the potential resets to ``reset_potential``
    and a spike is recorded.  During the refractory period the potential
    is held at reset and no spike can occur.
    """

    rule_name = "IntegrateAndFire"

    def __init__(
        self,
        resting_potential: float = 0.0,
        reset_potential: float = 0.0,
        threshold: float = 1.0,
        time_constant: float = 10.0,
        resistance: float = 1.0,
        background_current: float = 0.0,
        refractory_period: float = 0.0,
        add_noise: bool = False,
        noise_generator: Optional[Randomizer] = None,
    ):
        super().__init__(refractory_period=refractory_period)
        _require_positive("time_constant", time_constant)
        _require_positive("resistance", resistance)
        self.resting_potential = resting_potential
        self.reset_potential = reset_potential
        self.threshold = threshold
        self.time_constant = time_constant
        self.resistance = resistance
        self.background_current = background_current
        self._init_noise(add_noise, noise_generator)

    def update(self, neuron) -> None:
        _require_positive("time_constant", self.time_constant)
        if self.in_refractory(neuron):
            self.set_has_spiked(False, neuron)
            neuron.buffer = self.reset_potential
            return

        dt = neuron.network.time_step
        current = neuron.get_weighted_inputs() + self.background_current + self.noise()
        v = neuron.activation
        val = v + (dt / self.time_constant) * (
            self.resistance * current - (v - self.resting_potential)
        )
        if val >= self.threshold:
            val = self.reset_potential
            self.set_has_spiked(True, neuron)
        else:
            self.set_has_spiked(False, neuron)
        neuron.buffer = val

    def clear(self, neuron) -> None:
        super().clear(neuron)
        neuron.activation = self.resting_potential
        neuron.buffer = self.resting_potential

    def get_random_value(self, rng: Optional[np.random.Generator] = None) -> float:
        rng = rng if rng is not None else np.random.default_rng()
        return float(rng.uniform(self.reset_potential, self.threshold))

    def get_params(self) -> Dict[str, Any]:
        return {
            "resting_potential": self.resting_potential,
            "reset_potential": self.reset_potential,
            "threshold": self.threshold,
            "time_constant": self.time_constant,
            "resistance": self.resistance,
            "background_current": self.background_current,
            "refractory_period": self.refractory_period,
            "add_noise": self.add_noise,
        }


class IzhikevichRule(NoisyRule, SpikingRule):
    """Izhikevich (2003) spiking neuron.

        u' = u + dt · a·(b·v − u)
        v' = v + dt · (0.04·v² + 5·v + 140 − u + I)
        if v' ≥ threshold:  v' ← c,  u' ← u' + d,  spike

    ``I`` is the weighted input plus noise (when enabled) plus the
    constant background current ``i_bg``.  The activation is the membrane
    potential ``v``; the recovery variable ``u`` is private to the rule.
    """

    rule_name = "Izhikevich"

    def __init__(
        self,
        a: float = 0.02,
        b: float = 0.2,
        c: float = -65.0,
        d: float = 2.0,
        threshold: float = 30.0,
        i_bg: float = 0.0,
        add_noise: bool = False,
        noise_generator: Optional[Randomizer] = None,
    ):
        super().__init__()
        self.a = a
        self.b = b
        self.c = c
        self.d = d
        self.threshold = threshold
        self.i_bg = i_bg
        self.recovery = 0.0
        self._init_noise(add_noise, noise_generator)

    def init(self, neuron) -> None:
        self.recovery = self.b * neuron.activation

    def update(self, neuron) -> None:
        dt = neuron.network.time_step
        v = neuron.activation
        inputs = neuron.get_weighted_inputs() + self.noise() + self.i_bg

        self.recovery += dt * (self.a * (self.b * v - self.recovery))
        val = v + dt * (0.04 * v * v + 5.0 * v + 140.0 - self.recovery + inputs)

        if val >= self.threshold:
            val = self.c
            self.recovery += self.d
            self.set_has_spiked(True, neuron)
        else:
            self.set_has_spiked(False, neuron)
        neuron.buffer = val

    def clear(self, neuron) -> None:
        super().clear(neuron)
        neuron.activation = self.c
        neuron.buffer = self.c
        # A clamped neuron keeps its potential; rest u against that.
        self.recovery = self.b * neuron.activation

    def get_random_value(self, rng: Optional[np.random.Generator] = None) -> float:
        # Even odds of landing above threshold.
        rng = rng if rng is not None else np.random.default_rng()
        return float(2.0 * (self.threshold - self.c) * rng.random() + self.c)

    def get_state(self) -> Dict[str, Any]:
        state = super().get_state()
        state["recovery"] = self.recovery
        return state

    def get_params(self) -> Dict[str, Any]:
        return {
            "a": self.a,
            "b": self.b,
            "c": self.c,
            "d": self.d,
            "threshold": self.threshold,
            "i_bg": self.i_bg,
            "add_noise": self.add_noise,
        }


BUILTIN_RULES = (
    LinearRule,
    BinaryRule,
    ThreeValueRule,
    ClampedRule,
    DecayRule,
    LogisticRule,
    SigmoidalRule,
    StochasticRule,
    RandomRule,
    AdditiveRule,
    NakaRushtonRule,
    PointNeuronRule,
    SpikingThresholdRule,
    IntegrateAndFireRule,
    IzhikevichRule,
)

"""
simnet core: neurons, synapses, groups and the Network that steps them.

The Network owns every neuron, synapse and group in id-keyed dicts.
Neurons keep their incident synapses in ``_fan_in`` / ``_fan_out`` dicts
(synapse id → Synapse) which the Network maintains; a synapse is present
in its endpoints' dicts exactly when it is present in
``network.synapses``.

Stepping protocol (``Network.step``):
    1. Reject re-entrant calls.
    2. Snapshot activations, PSRs and strengths.
    3. Evaluate neurons in ascending (update_priority, creation order),
       each rule writing only ``neuron.buffer``.
    4. Evaluate synapses (learning rule, then spike responder) against
       the pre-commit activations.
    5. Commit buffers into activations (clamped neurons keep theirs).
    6. Advance time by 1 (discrete) or ``time_step`` (continuous).
    7. Emit ``network_updated``.

Under the ``progressive`` commit policy each priority cohort commits
before the next cohort is evaluated, and synapses run after the last
cohort.  Any exception during evaluation restores the snapshot, leaves
the clock untouched and re-raises.

Persistence: ``to_dict`` / ``from_dict`` give a flat, JSON-safe shape;
``checkpoint`` / ``restore`` write it as JSON or msgpack.
"""

from __future__ import annotations

import bisect
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import msgpack
import numpy as np

import simnet_paths
from simnet_config import COMMIT_POLICIES, SimnetConfig
from simnet_errors import (
    InvalidParameterError,
    InvariantViolationError,
    StaleReferenceError,
    StepInProgressError,
)
from simnet_registry import Registries, build_default_registries
from spike_responders import SpikeResponder
from synapse_rules import SynapseUpdateRule
from update_rules import (
    BiasedRule,
    NeuronUpdateRule,
    SpikingRule,
    TimeType,
    generator_state,
    set_generator_state,
)

logger = logging.getLogger("simnet.core")

FORMAT_VERSION = 1

EVENT_TYPES = frozenset({
    "neuron_added",
    "neuron_removed",
    "neuron_changed",
    "neuron_moved",
    "synapse_added",
    "synapse_removed",
    "synapse_changed",
    "group_added",
    "group_removed",
    "model_cleared",
    "network_updated",
})


# ---------------------------------------------------------------------------
# Step Result / Telemetry
# ---------------------------------------------------------------------------

@dataclass
class StepResult:
    """Result returned from Network.step().

    Attributes:
        time: Network time after the step.
        iteration: Number of completed steps.
        spiked_neuron_ids: Neurons whose spiking rule fired this step,
            in update order.
    """

    time: float = 0.0
    iteration: int = 0
    spiked_neuron_ids: List[str] = field(default_factory=list)


@dataclass
class Telemetry:
    """Network statistics snapshot."""

    time: float = 0.0
    iteration: int = 0
    time_type: str = "DISCRETE"
    total_neurons: int = 0
    total_synapses: int = 0
    total_groups: int = 0
    mean_activation: float = 0.0
    std_activation: float = 0.0
    mean_weight: float = 0.0
    std_weight: float = 0.0
    spiking_neurons: int = 0


# ---------------------------------------------------------------------------
# Neuron
# ---------------------------------------------------------------------------

class Neuron:
    """A node whose activation evolves under its update rule.

    Args:
        network: The network this neuron will belong to.  The neuron is
            not registered until ``network.add_neuron`` is called.
        update_rule: Rule instance or registry name (default from config).
        neuron_id: Explicit id; auto-assigned ``Neuron_<n>`` if omitted.
        label: Free-form display label.
    """

    def __init__(
        self,
        network: "Network",
        update_rule: Union[NeuronUpdateRule, str, None] = None,
        neuron_id: Optional[str] = None,
        label: str = "",
    ):
        if network is None:
            raise ValueError("Neuron requires a network")
        defaults = network.config.neuron
        self.network = network
        self.id = neuron_id or network._next_id("Neuron")
        self.label = label
        self.lower_bound: float = defaults.lower_bound
        self.upper_bound: float = defaults.upper_bound
        self.increment: float = defaults.increment
        self.buffer: float = 0.0
        self.input_value: float = 0.0
        self.clamped: bool = False
        self.target_value: float = 0.0
        self.parent_group: Optional["Group"] = None
        self._activation: float = 0.0
        self._x: float = 0.0
        self._y: float = 0.0
        self._update_priority: int = 0
        self._fan_in: Dict[str, "Synapse"] = {}
        self._fan_out: Dict[str, "Synapse"] = {}
        self._update_rule = self._resolve_rule(
            update_rule if update_rule is not None else defaults.update_rule
        )
        self._update_rule.init(self)

    def __repr__(self) -> str:
        return (
            f"Neuron({self.id}, rule={self._update_rule.rule_name}, "
            f"activation={self._activation:.4g})"
        )

    # --- activation ---------------------------------------------------------

    @property
    def activation(self) -> float:
        return self._activation

    @activation.setter
    def activation(self, value: float) -> None:
        # Clamped neurons ignore ordinary writes.
        if self.clamped:
            return
        self._activation = float(value)

    def set_activation(self, value: float) -> None:
        self.activation = value

    def force_set_activation(self, value: float) -> None:
        """Write the activation even when clamped."""
        self._activation = float(value)

    def increment_activation(self) -> None:
        self._activation = min(self._activation + self.increment, self.upper_bound)
        self._fire_changed()

    def decrement_activation(self) -> None:
        self._activation = max(self._activation - self.increment, self.lower_bound)
        self._fire_changed()

    def clip(self, value: float) -> float:
        return min(max(value, self.lower_bound), self.upper_bound)

    def check_bounds(self) -> None:
        self._activation = self.clip(self._activation)

    def commit(self) -> None:
        self.activation = self.buffer

    # --- update rule --------------------------------------------------------

    @property
    def update_rule(self) -> NeuronUpdateRule:
        return self._update_rule

    @update_rule.setter
    def update_rule(self, rule: Union[NeuronUpdateRule, str]) -> None:
        new_rule = self._resolve_rule(rule)
        old_rule = self._update_rule
        self._update_rule = new_rule
        for syn in self._fan_out.values():
            syn.init_spike_responder()
        if self._is_registered():
            self.network.update_time_type()
            self.network._emit("neuron_changed", neuron=self, old_rule=old_rule, new_rule=new_rule)
        new_rule.init(self)

    def _resolve_rule(self, rule: Union[NeuronUpdateRule, str]) -> NeuronUpdateRule:
        if isinstance(rule, str):
            return self.network.registries.neuron_rules.create(rule)
        if isinstance(rule, NeuronUpdateRule):
            return rule
        raise TypeError(f"Expected NeuronUpdateRule or rule name, got {type(rule).__name__}")

    @property
    def type_name(self) -> str:
        return self._update_rule.rule_name

    @property
    def is_spike(self) -> bool:
        rule = self._update_rule
        return isinstance(rule, SpikingRule) and rule.has_spiked

    def update(self) -> None:
        self._update_rule.update(self)

    def clear(self) -> None:
        self.input_value = 0.0
        self._update_rule.clear(self)

    # --- priority / location ------------------------------------------------

    @property
    def update_priority(self) -> int:
        return self._update_priority

    @update_priority.setter
    def update_priority(self, priority: int) -> None:
        old = self._update_priority
        self._update_priority = priority
        if self._is_registered():
            self.network._reprioritize(self, old)

    @property
    def x(self) -> float:
        return self._x

    @x.setter
    def x(self, value: float) -> None:
        self._x = value
        self._fire_moved()

    @property
    def y(self) -> float:
        return self._y

    @y.setter
    def y(self, value: float) -> None:
        self._y = value
        self._fire_moved()

    def set_location(self, x: float, y: float) -> None:
        self._x = x
        self._y = y
        self._fire_moved()

    # --- connectivity -------------------------------------------------------

    @property
    def fan_in(self) -> List["Synapse"]:
        return list(self._fan_in.values())

    @property
    def fan_out(self) -> List["Synapse"]:
        return list(self._fan_out.values())

    def get_weighted_inputs(self) -> float:
        """External input plus the value of every transmitting fan-in
        synapse, plus the rule's bias when it has one."""
        wtd = self.input_value
        for syn in self._fan_in.values():
            if syn.send_weighted_input:
                wtd += syn.get_value()
        if isinstance(self._update_rule, BiasedRule):
            wtd += self._update_rule.bias
        return wtd

    def get_summed_incoming_weights(self) -> float:
        return sum(syn.strength for syn in self._fan_in.values())

    def get_number_of_active_inputs(self, threshold: float = 0.0) -> int:
        return sum(1 for syn in self._fan_in.values() if syn.source.activation > threshold)

    def get_total_input(self) -> float:
        """Summed activation of the neurons feeding this one."""
        return sum(syn.source.activation for syn in self._fan_in.values())

    def get_average_input(self) -> float:
        if not self._fan_in:
            return 0.0
        return self.get_total_input() / len(self._fan_in)

    @property
    def is_input(self) -> bool:
        return not self._fan_in

    @property
    def is_output(self) -> bool:
        return not self._fan_out

    def is_connected(self, other: "Neuron") -> bool:
        if any(syn.target is other for syn in self._fan_out.values()):
            return True
        return any(syn.source is other for syn in self._fan_in.values())

    def round(self, precision: int) -> None:
        """Round the activation to ``precision`` decimals (clamp-aware)."""
        self.activation = round(self._activation, precision)

    def delete_fan_in(self) -> None:
        self._remove_synapses(list(self._fan_in.values()))

    def delete_fan_out(self) -> None:
        self._remove_synapses(list(self._fan_out.values()))

    def delete_connected_synapses(self) -> None:
        """Remove every incident synapse from the network.  Safe to repeat."""
        self.delete_fan_in()
        self.delete_fan_out()

    def _remove_synapses(self, synapses: List["Synapse"]) -> None:
        for syn in synapses:
            if self.network.synapses.get(syn.id) is syn:
                self.network.remove_synapse(syn)

    # --- randomization ------------------------------------------------------

    def _random_value(self) -> float:
        val = self._update_rule.get_random_value(self.network.rng)
        if self._update_rule.bounded:
            val = self.clip(val)
        return val

    def randomize(self) -> None:
        self.force_set_activation(self._random_value())

    def randomize_buffer(self) -> None:
        self.buffer = self._random_value()

    def randomize_bias(self, lower: float, upper: float) -> None:
        if isinstance(self._update_rule, BiasedRule):
            self._update_rule.bias = float(self.network.rng.uniform(lower, upper))

    def randomize_fan_in(self) -> None:
        for syn in self._fan_in.values():
            syn.randomize()

    # --- internals ----------------------------------------------------------

    def _is_registered(self) -> bool:
        return self.network.neurons.get(self.id) is self

    def _fire_changed(self) -> None:
        if self._is_registered():
            self.network._emit(
                "neuron_changed", neuron=self,
                old_rule=self._update_rule, new_rule=self._update_rule,
            )

    def _fire_moved(self) -> None:
        if self._is_registered():
            self.network._emit("neuron_moved", neuron=self)


# ---------------------------------------------------------------------------
# Synapse
# ---------------------------------------------------------------------------

class Synapse:
    """Directed weighted connection between two neurons of one network.

    Constructing a synapse does not register it; pass it to
    ``Network.add_synapse`` (or use ``Network.connect``).

    Args:
        source: Presynaptic neuron.
        target: Postsynaptic neuron.
        strength: Initial weight (default from config).
        synapse_id: Explicit id; auto-assigned ``Synapse_<n>`` if omitted.
        learning_rule: Learning rule instance or registry name.
        spike_responder: Responder instance or registry name; only kept
            when the source runs a spiking rule.
    """

    def __init__(
        self,
        source: Neuron,
        target: Neuron,
        strength: Optional[float] = None,
        synapse_id: Optional[str] = None,
        learning_rule: Union[SynapseUpdateRule, str, None] = None,
        spike_responder: Union[SpikeResponder, str, None] = None,
    ):
        if source.network is not target.network:
            raise ValueError("Synapse endpoints belong to different networks")
        network = source.network
        defaults = network.config.synapse
        self.network = network
        self.id = synapse_id or network._next_id("Synapse")
        self._source = source
        self._target = target
        self.strength: float = defaults.strength if strength is None else strength
        self.lower_bound: float = defaults.lower_bound
        self.upper_bound: float = defaults.upper_bound
        self.increment: float = defaults.increment
        self.psr: float = 0.0
        self.send_weighted_input: bool = True
        self.clamped: bool = False
        self.parent_group: Optional["Group"] = None
        registries = network.registries
        if learning_rule is None:
            learning_rule = defaults.learning_rule
        if isinstance(learning_rule, str):
            learning_rule = registries.synapse_rules.create(learning_rule)
        self.learning_rule: SynapseUpdateRule = learning_rule
        if isinstance(spike_responder, str):
            spike_responder = registries.spike_responders.create(spike_responder)
        self.spike_responder: Optional[SpikeResponder] = spike_responder
        self.init_spike_responder()

    def __repr__(self) -> str:
        return f"Synapse({self.id}, {self._source.id}->{self._target.id}, strength={self.strength:.4g})"

    @property
    def source(self) -> Neuron:
        return self._source

    @property
    def target(self) -> Neuron:
        return self._target

    def init_spike_responder(self) -> None:
        """Attach, keep or drop the responder to match the source rule."""
        self.psr = 0.0
        if isinstance(self._source.update_rule, SpikingRule):
            if self.spike_responder is None:
                self.spike_responder = self.network.registries.spike_responders.create(
                    "JumpAndDecay"
                )
        else:
            self.spike_responder = None

    def get_value(self) -> float:
        if self.spike_responder is not None:
            return self.psr
        return self.strength * self._source.activation

    def update(self) -> None:
        if not self.clamped:
            self.learning_rule.apply(self)
        if self.spike_responder is not None:
            self.spike_responder.update(self)

    def clip(self, value: float) -> float:
        return min(max(value, self.lower_bound), self.upper_bound)

    def increment_weight(self) -> None:
        self.strength = min(self.strength + self.increment, self.upper_bound)
        self._fire_changed()

    def decrement_weight(self) -> None:
        self.strength = max(self.strength - self.increment, self.lower_bound)
        self._fire_changed()

    def randomize(self) -> None:
        """Draw a strength from the network's random bounds, clipped."""
        net = self.network
        self.strength = self.clip(float(net.rng.uniform(net.random_lower, net.random_upper)))

    def _fire_changed(self) -> None:
        if self.network.synapses.get(self.id) is self:
            self.network._emit("synapse_changed", synapse=self)


# ---------------------------------------------------------------------------
# Group
# ---------------------------------------------------------------------------

class Group:
    """Non-owning set of neurons (and synapses) for bulk operations.

    A neuron or synapse belongs to at most one group at a time.
    """

    def __init__(self, network: "Network", label: str = "", group_id: Optional[str] = None):
        self.network = network
        self.id = group_id or network._next_id("Group")
        self.label = label
        self._neurons: Dict[str, Neuron] = {}
        self._synapses: Dict[str, Synapse] = {}

    def __repr__(self) -> str:
        return f"Group({self.id}, neurons={len(self._neurons)}, synapses={len(self._synapses)})"

    def __len__(self) -> int:
        return len(self._neurons)

    def __contains__(self, item) -> bool:
        if isinstance(item, Synapse):
            return self._synapses.get(item.id) is item
        return self._neurons.get(getattr(item, "id", item)) is not None

    def __iter__(self):
        return iter(list(self._neurons.values()))

    @property
    def neurons(self) -> List[Neuron]:
        return list(self._neurons.values())

    @property
    def synapses(self) -> List[Synapse]:
        return list(self._synapses.values())

    def add_neuron(self, neuron: Neuron) -> None:
        neuron = self.network._resolve_neuron(neuron)
        if neuron.parent_group is not None and neuron.parent_group is not self:
            neuron.parent_group.remove_neuron(neuron)
        self._neurons[neuron.id] = neuron
        neuron.parent_group = self

    def remove_neuron(self, neuron: Neuron) -> None:
        if self._neurons.pop(neuron.id, None) is not None:
            neuron.parent_group = None

    def add_synapse(self, synapse: Synapse) -> None:
        synapse = self.network._resolve_synapse(synapse)
        if synapse.parent_group is not None and synapse.parent_group is not self:
            synapse.parent_group.remove_synapse(synapse)
        self._synapses[synapse.id] = synapse
        synapse.parent_group = self

    def remove_synapse(self, synapse: Synapse) -> None:
        if self._synapses.pop(synapse.id, None) is not None:
            synapse.parent_group = None

    # --- bulk operations ----------------------------------------------------

    def set_update_rule(self, rule: Union[NeuronUpdateRule, str]) -> None:
        """Give every member its own copy of ``rule``."""
        for neuron in self._neurons.values():
            neuron.update_rule = rule.deep_copy() if isinstance(rule, NeuronUpdateRule) else rule

    def randomize(self) -> None:
        for neuron in self._neurons.values():
            neuron.randomize()

    def randomize_weights(self) -> None:
        for syn in self._synapses.values():
            syn.randomize()

    def clear(self) -> None:
        for neuron in self._neurons.values():
            neuron.clear()

    def set_clamped(self, clamped: bool) -> None:
        for neuron in self._neurons.values():
            neuron.clamped = clamped

    def activations(self) -> np.ndarray:
        return np.array([n.activation for n in self._neurons.values()], dtype=float)


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------

NeuronRef = Union[Neuron, str]
SynapseRef = Union[Synapse, str]


class Network:
    """Owns neurons, synapses and groups; steps them; emits change events.

    Args:
        config: ``SimnetConfig`` (defaults if None).
        registries: Rule/responder registries (built-ins if None).
        seed: Seed for the network generator; overrides ``config.simulation.seed``.
    """

    def __init__(
        self,
        config: Optional[SimnetConfig] = None,
        registries: Optional[Registries] = None,
        seed: Optional[int] = None,
    ):
        self.config = config if config is not None else SimnetConfig()
        self.config.validate()
        self.registries = registries if registries is not None else build_default_registries()
        sim = self.config.simulation

        # --- Core collections ---
        self.neurons: Dict[str, Neuron] = {}
        self.synapses: Dict[str, Synapse] = {}
        self.groups: Dict[str, Group] = {}

        # --- Priority index: sorted (priority, creation seq, neuron id) ---
        self._priority_index: List[Tuple[Any, int, str]] = []
        self._creation_seq: Dict[str, int] = {}
        self._seq = 0
        self._id_counters: Dict[str, int] = {}

        # --- Event handlers ---
        self._event_handlers: Dict[str, List[Callable]] = {}

        # --- Clock ---
        self.time: float = 0.0
        self.iteration: int = 0
        self.time_type = TimeType.DISCRETE
        self._time_step = sim.time_step
        self._commit_policy = sim.commit_policy
        self._updating = False
        self._last_spiked: List[str] = []

        # --- Randomness ---
        self.seed = seed if seed is not None else sim.seed
        self.rng = np.random.default_rng(self.seed)
        self.random_lower = self.config.randomization.lower
        self.random_upper = self.config.randomization.upper

    def __repr__(self) -> str:
        return (
            f"Network(neurons={len(self.neurons)}, synapses={len(self.synapses)}, "
            f"time={self.time:.4g})"
        )

    # -----------------------------------------------------------------------
    # Properties
    # -----------------------------------------------------------------------

    @property
    def time_step(self) -> float:
        return self._time_step

    @time_step.setter
    def time_step(self, value: float) -> None:
        if value <= 0:
            raise InvalidParameterError(f"time_step must be > 0 (got {value})")
        self._time_step = value

    @property
    def commit_policy(self) -> str:
        return self._commit_policy

    @commit_policy.setter
    def commit_policy(self, policy: str) -> None:
        if policy not in COMMIT_POLICIES:
            raise InvalidParameterError(
                f"commit_policy must be one of {COMMIT_POLICIES} (got {policy!r})"
            )
        self._commit_policy = policy

    @property
    def is_updating(self) -> bool:
        return self._updating

    # -----------------------------------------------------------------------
    # Ids and lookups
    # -----------------------------------------------------------------------

    def _next_id(self, prefix: str) -> str:
        taken = {"Neuron": self.neurons, "Synapse": self.synapses, "Group": self.groups}[prefix]
        n = self._id_counters.get(prefix, 0) + 1
        while f"{prefix}_{n}" in taken:
            n += 1
        self._id_counters[prefix] = n
        return f"{prefix}_{n}"

    def get_neuron(self, neuron_id: str) -> Neuron:
        neuron = self.neurons.get(neuron_id)
        if neuron is None:
            raise StaleReferenceError(f"Neuron {neuron_id} not found")
        return neuron

    def get_synapse(self, synapse_id: str) -> Synapse:
        syn = self.synapses.get(synapse_id)
        if syn is None:
            raise StaleReferenceError(f"Synapse {synapse_id} not found")
        return syn

    def get_group(self, group_id: str) -> Group:
        group = self.groups.get(group_id)
        if group is None:
            raise StaleReferenceError(f"Group {group_id} not found")
        return group

    def _resolve_neuron(self, ref: NeuronRef) -> Neuron:
        if isinstance(ref, str):
            return self.get_neuron(ref)
        if self.neurons.get(ref.id) is not ref:
            raise StaleReferenceError(f"Neuron {ref.id} is not registered in this network")
        return ref

    def _resolve_synapse(self, ref: SynapseRef) -> Synapse:
        if isinstance(ref, str):
            return self.get_synapse(ref)
        if self.synapses.get(ref.id) is not ref:
            raise StaleReferenceError(f"Synapse {ref.id} is not registered in this network")
        return ref

    def _resolve_group(self, ref: Union[Group, str]) -> Group:
        if isinstance(ref, str):
            return self.get_group(ref)
        if self.groups.get(ref.id) is not ref:
            raise StaleReferenceError(f"Group {ref.id} is not registered in this network")
        return ref

    def find_synapse(self, source: NeuronRef, target: NeuronRef) -> Optional[Synapse]:
        """First synapse from ``source`` to ``target``, or None."""
        src = self._resolve_neuron(source)
        tgt = self._resolve_neuron(target)
        for syn in src._fan_out.values():
            if syn.target is tgt:
                return syn
        return None

    def neuron_list(self) -> List[Neuron]:
        return list(self.neurons.values())

    def synapse_list(self) -> List[Synapse]:
        return list(self.synapses.values())

    def priority_order(self) -> List[Neuron]:
        return [self.neurons[nid] for _, _, nid in self._priority_index]

    # -----------------------------------------------------------------------
    # Topology Management
    # -----------------------------------------------------------------------

    def _check_not_updating(self, action: str) -> None:
        if self._updating:
            raise StepInProgressError(f"Cannot {action} while the network is updating")

    def create_neuron(
        self,
        update_rule: Union[NeuronUpdateRule, str, None] = None,
        neuron_id: Optional[str] = None,
        label: str = "",
        x: float = 0.0,
        y: float = 0.0,
        update_priority: int = 0,
    ) -> Neuron:
        """Build a neuron from config defaults and register it.

        Args:
            update_rule: Rule instance or registry name.
            neuron_id: Optional explicit ID.
            label: Display label.
            x, y: Location.
            update_priority: Lower values update first.

        Returns:
            The registered Neuron.
        """
        self._check_not_updating("create a neuron")
        neuron = Neuron(self, update_rule, neuron_id=neuron_id, label=label)
        neuron._x = x
        neuron._y = y
        neuron._update_priority = update_priority
        return self.add_neuron(neuron)

    def add_neuron(self, neuron: Neuron) -> Neuron:
        self._check_not_updating("add a neuron")
        if neuron.network is not self:
            raise ValueError(f"Neuron {neuron.id} was built for a different network")
        if neuron.id in self.neurons:
            raise ValueError(f"Neuron {neuron.id} already exists")
        self.neurons[neuron.id] = neuron
        self._seq += 1
        self._creation_seq[neuron.id] = self._seq
        bisect.insort(self._priority_index, (neuron.update_priority, self._seq, neuron.id))
        self.update_time_type()
        logger.debug("Added %s", neuron.id)
        self._emit("neuron_added", neuron=neuron)
        return neuron

    def remove_neuron(self, neuron: NeuronRef) -> None:
        """Remove a neuron together with every synapse touching it."""
        self._check_not_updating("remove a neuron")
        neuron = self._resolve_neuron(neuron)
        neuron.delete_connected_synapses()
        if neuron.parent_group is not None:
            neuron.parent_group.remove_neuron(neuron)
        key = (neuron.update_priority, self._creation_seq.pop(neuron.id), neuron.id)
        idx = bisect.bisect_left(self._priority_index, key)
        if idx < len(self._priority_index) and self._priority_index[idx] == key:
            del self._priority_index[idx]
        else:
            self._resort_priorities()
        del self.neurons[neuron.id]
        self.update_time_type()
        logger.debug("Removed %s", neuron.id)
        self._emit("neuron_removed", neuron=neuron)

    def add_synapse(self, synapse: Synapse) -> Synapse:
        self._check_not_updating("add a synapse")
        if synapse.network is not self:
            raise ValueError(f"Synapse {synapse.id} was built for a different network")
        if synapse.id in self.synapses:
            raise ValueError(f"Synapse {synapse.id} already exists")
        self._resolve_neuron(synapse.source)
        self._resolve_neuron(synapse.target)
        self.synapses[synapse.id] = synapse
        synapse.source._fan_out[synapse.id] = synapse
        synapse.target._fan_in[synapse.id] = synapse
        synapse.init_spike_responder()
        self._emit("synapse_added", synapse=synapse)
        return synapse

    def connect(
        self,
        source: NeuronRef,
        target: NeuronRef,
        strength: Optional[float] = None,
        learning_rule: Union[SynapseUpdateRule, str, None] = None,
        spike_responder: Union[SpikeResponder, str, None] = None,
        synapse_id: Optional[str] = None,
    ) -> Synapse:
        """Create and register a synapse from ``source`` to ``target``."""
        self._check_not_updating("add a synapse")
        syn = Synapse(
            self._resolve_neuron(source),
            self._resolve_neuron(target),
            strength=strength,
            synapse_id=synapse_id,
            learning_rule=learning_rule,
            spike_responder=spike_responder,
        )
        return self.add_synapse(syn)

    def remove_synapse(self, synapse: SynapseRef) -> None:
        self._check_not_updating("remove a synapse")
        syn = self._resolve_synapse(synapse)
        del self.synapses[syn.id]
        syn.source._fan_out.pop(syn.id, None)
        syn.target._fan_in.pop(syn.id, None)
        if syn.parent_group is not None:
            syn.parent_group.remove_synapse(syn)
        self._emit("synapse_removed", synapse=syn)

    def rewire_synapse(
        self,
        synapse: SynapseRef,
        source: Optional[NeuronRef] = None,
        target: Optional[NeuronRef] = None,
    ) -> Synapse:
        """Move one or both endpoints of a registered synapse."""
        self._check_not_updating("rewire a synapse")
        syn = self._resolve_synapse(synapse)
        new_source = self._resolve_neuron(source) if source is not None else syn.source
        new_target = self._resolve_neuron(target) if target is not None else syn.target
        syn.source._fan_out.pop(syn.id, None)
        syn.target._fan_in.pop(syn.id, None)
        syn._source = new_source
        syn._target = new_target
        new_source._fan_out[syn.id] = syn
        new_target._fan_in[syn.id] = syn
        syn.init_spike_responder()
        self._emit("synapse_changed", synapse=syn)
        return syn

    def add_group(
        self,
        neurons: Iterable[NeuronRef] = (),
        label: str = "",
        group_id: Optional[str] = None,
    ) -> Group:
        self._check_not_updating("add a group")
        group = Group(self, label=label, group_id=group_id)
        if group.id in self.groups:
            raise ValueError(f"Group {group.id} already exists")
        self.groups[group.id] = group
        for ref in neurons:
            group.add_neuron(ref)
        self._emit("group_added", group=group)
        return group

    def remove_group(self, group: Union[Group, str]) -> None:
        """Dissolve a group; its members stay in the network."""
        self._check_not_updating("remove a group")
        group = self._resolve_group(group)
        for neuron in group.neurons:
            group.remove_neuron(neuron)
        for syn in group.synapses:
            group.remove_synapse(syn)
        del self.groups[group.id]
        self._emit("group_removed", group=group)

    def clear_all(self) -> None:
        """Drop every neuron, synapse and group and reset the clock."""
        self._check_not_updating("clear the network")
        self.neurons.clear()
        self.synapses.clear()
        self.groups.clear()
        self._priority_index.clear()
        self._creation_seq.clear()
        self._id_counters.clear()
        self._last_spiked = []
        self.time = 0.0
        self.iteration = 0
        self.time_type = TimeType.DISCRETE
        logger.info("Network cleared")
        self._emit("model_cleared")

    def copy_neurons(
        self,
        neurons: Iterable[NeuronRef],
        dx: float = 0.0,
        dy: float = 0.0,
    ) -> List[Neuron]:
        """Duplicate neurons and the synapses among them.

        Rules, responders and learning rules are deep-copied; synapses to
        neurons outside the copied set are not duplicated.

        Returns:
            The new neurons, in the order given.
        """
        self._check_not_updating("copy neurons")
        originals = [self._resolve_neuron(ref) for ref in neurons]
        mapping: Dict[str, Neuron] = {}
        for old in originals:
            new = Neuron(self, old.update_rule.deep_copy(), label=old.label)
            new.lower_bound = old.lower_bound
            new.upper_bound = old.upper_bound
            new.increment = old.increment
            new.input_value = old.input_value
            new.target_value = old.target_value
            new.clamped = old.clamped
            new.buffer = old.buffer
            new._update_priority = old.update_priority
            new._x = old.x + dx
            new._y = old.y + dy
            new.force_set_activation(old.activation)
            new.update_rule.init(new)
            mapping[old.id] = new
            self.add_neuron(new)

        for old in originals:
            for syn in old.fan_out:
                if syn.target.id not in mapping:
                    continue
                responder = syn.spike_responder.deep_copy() if syn.spike_responder else None
                clone = Synapse(
                    mapping[old.id],
                    mapping[syn.target.id],
                    strength=syn.strength,
                    learning_rule=syn.learning_rule.deep_copy(),
                    spike_responder=responder,
                )
                clone.lower_bound = syn.lower_bound
                clone.upper_bound = syn.upper_bound
                clone.increment = syn.increment
                clone.send_weighted_input = syn.send_weighted_input
                clone.clamped = syn.clamped
                self.add_synapse(clone)

        return [mapping[old.id] for old in originals]

    # -----------------------------------------------------------------------
    # Priorities / time type
    # -----------------------------------------------------------------------

    def _reprioritize(self, neuron: Neuron, old_priority: int) -> None:
        seq = self._creation_seq[neuron.id]
        key = (old_priority, seq, neuron.id)
        idx = bisect.bisect_left(self._priority_index, key)
        if idx < len(self._priority_index) and self._priority_index[idx] == key:
            del self._priority_index[idx]
            bisect.insort(self._priority_index, (neuron.update_priority, seq, neuron.id))
        else:
            self._resort_priorities()

    def _resort_priorities(self) -> None:
        self._priority_index = sorted(
            (n.update_priority, self._creation_seq[n.id], n.id)
            for n in self.neurons.values()
        )

    def update_time_type(self) -> None:
        """Continuous if any neuron runs a continuous rule, else discrete."""
        previous = self.time_type
        continuous = any(
            n.update_rule.time_type is TimeType.CONTINUOUS for n in self.neurons.values()
        )
        self.time_type = TimeType.CONTINUOUS if continuous else TimeType.DISCRETE
        if self.time_type is not previous:
            logger.debug("Time type changed to %s", self.time_type.name)

    # -----------------------------------------------------------------------
    # Simulation Loop
    # -----------------------------------------------------------------------

    def step(self) -> StepResult:
        """Advance the network by one update.

        Returns:
            StepResult with the new time, iteration and spiking neurons.

        Raises:
            StepInProgressError: If called while a step is running.
        """
        if self._updating:
            raise StepInProgressError("step() called while a step is already running")
        self._updating = True
        snapshot = self._snapshot()
        try:
            order = self.priority_order()
            if self._commit_policy == "progressive":
                for cohort in self._cohorts(order):
                    for neuron in cohort:
                        neuron.update()
                    for neuron in cohort:
                        neuron.commit()
                for syn in self.synapses.values():
                    syn.update()
            else:
                for neuron in order:
                    neuron.update()
                for syn in self.synapses.values():
                    syn.update()
                for neuron in order:
                    neuron.commit()
            spiked = [n.id for n in order if n.is_spike]
        except Exception:
            self._restore_snapshot(snapshot)
            logger.exception("Step aborted at time %s; state restored", self.time)
            raise
        finally:
            self._updating = False

        self.time += self._time_step if self.time_type is TimeType.CONTINUOUS else 1
        self.iteration += 1
        self._last_spiked = spiked
        result = StepResult(time=self.time, iteration=self.iteration, spiked_neuron_ids=spiked)
        self._emit("network_updated", result=result)
        return result

    def run(self, n: int) -> List[StepResult]:
        """Run n steps; returns all StepResults."""
        return [self.step() for _ in range(n)]

    def _cohorts(self, order: List[Neuron]) -> List[List[Neuron]]:
        cohorts: List[List[Neuron]] = []
        for neuron in order:
            if cohorts and cohorts[-1][0].update_priority == neuron.update_priority:
                cohorts[-1].append(neuron)
            else:
                cohorts.append([neuron])
        return cohorts

    def _snapshot(self) -> Dict[str, Dict[str, float]]:
        return {
            "activation": {nid: n.activation for nid, n in self.neurons.items()},
            "buffer": {nid: n.buffer for nid, n in self.neurons.items()},
            "psr": {sid: s.psr for sid, s in self.synapses.items()},
            "strength": {sid: s.strength for sid, s in self.synapses.items()},
        }

    def _restore_snapshot(self, snapshot: Dict[str, Dict[str, float]]) -> None:
        for nid, value in snapshot["activation"].items():
            neuron = self.neurons[nid]
            neuron.force_set_activation(value)
            neuron.buffer = snapshot["buffer"][nid]
        for sid, value in snapshot["psr"].items():
            syn = self.synapses[sid]
            syn.psr = value
            syn.strength = snapshot["strength"][sid]

    # -----------------------------------------------------------------------
    # Bulk value operations
    # -----------------------------------------------------------------------

    def set_random_bounds(self, lower: float, upper: float) -> None:
        if lower > upper:
            raise InvalidParameterError(f"Random lower bound {lower} exceeds upper bound {upper}")
        self.random_lower = lower
        self.random_upper = upper

    def randomize_neurons(self, neurons: Optional[Iterable[NeuronRef]] = None) -> None:
        targets = self.neuron_list() if neurons is None else [self._resolve_neuron(n) for n in neurons]
        for neuron in targets:
            neuron.randomize()

    def randomize_weights(self, synapses: Optional[Iterable[SynapseRef]] = None) -> None:
        targets = self.synapse_list() if synapses is None else [self._resolve_synapse(s) for s in synapses]
        for syn in targets:
            syn.randomize()

    def clear_activations(self) -> None:
        """Return every neuron rule to rest and zero every PSR."""
        for neuron in self.neurons.values():
            neuron.clear()
        for syn in self.synapses.values():
            syn.init_spike_responder()

    # -----------------------------------------------------------------------
    # Telemetry / integrity
    # -----------------------------------------------------------------------

    def get_telemetry(self) -> Telemetry:
        acts = np.array([n.activation for n in self.neurons.values()], dtype=float)
        weights = np.array([s.strength for s in self.synapses.values()], dtype=float)
        return Telemetry(
            time=self.time,
            iteration=self.iteration,
            time_type=self.time_type.name,
            total_neurons=len(self.neurons),
            total_synapses=len(self.synapses),
            total_groups=len(self.groups),
            mean_activation=float(acts.mean()) if acts.size else 0.0,
            std_activation=float(acts.std()) if acts.size else 0.0,
            mean_weight=float(weights.mean()) if weights.size else 0.0,
            std_weight=float(weights.std()) if weights.size else 0.0,
            spiking_neurons=len(self._last_spiked),
        )

    def verify_integrity(self) -> bool:
        """Check registry bookkeeping; raise InvariantViolationError on a fault."""
        for sid, syn in self.synapses.items():
            if syn.network is not self:
                raise InvariantViolationError(f"Synapse {sid} belongs to another network")
            for end, role in ((syn.source, "source"), (syn.target, "target")):
                if self.neurons.get(end.id) is not end:
                    raise InvariantViolationError(f"Synapse {sid} {role} {end.id} is not registered")
            if syn.source._fan_out.get(sid) is not syn:
                raise InvariantViolationError(f"Synapse {sid} missing from {syn.source.id} fan-out")
            if syn.target._fan_in.get(sid) is not syn:
                raise InvariantViolationError(f"Synapse {sid} missing from {syn.target.id} fan-in")

        for nid, neuron in self.neurons.items():
            if neuron.network is not self:
                raise InvariantViolationError(f"Neuron {nid} belongs to another network")
            for sid, syn in neuron._fan_in.items():
                if self.synapses.get(sid) is not syn or syn.target is not neuron:
                    raise InvariantViolationError(f"Neuron {nid} fan-in holds stale synapse {sid}")
            for sid, syn in neuron._fan_out.items():
                if self.synapses.get(sid) is not syn or syn.source is not neuron:
                    raise InvariantViolationError(f"Neuron {nid} fan-out holds stale synapse {sid}")
            if neuron.parent_group is not None and neuron not in neuron.parent_group:
                raise InvariantViolationError(f"Neuron {nid} parent group does not list it")

        expected = sorted(
            (n.update_priority, self._creation_seq.get(n.id, -1), n.id)
            for n in self.neurons.values()
        )
        if expected != self._priority_index:
            raise InvariantViolationError("Priority index is out of date")

        for gid, group in self.groups.items():
            for neuron in group.neurons:
                if self.neurons.get(neuron.id) is not neuron:
                    raise InvariantViolationError(f"Group {gid} holds unregistered neuron {neuron.id}")
        return True

    # -----------------------------------------------------------------------
    # Event System
    # -----------------------------------------------------------------------

    def register_event_handler(self, event_type: str, callback: Callable) -> None:
        """Subscribe ``callback(**kwargs)`` to one of ``EVENT_TYPES``."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type '{event_type}'")
        self._event_handlers.setdefault(event_type, []).append(callback)

    def unregister_event_handler(self, event_type: str, callback: Callable) -> bool:
        """Remove a callback; returns False if it was not registered."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type '{event_type}'")
        handlers = self._event_handlers.get(event_type, [])
        if callback in handlers:
            handlers.remove(callback)
            return True
        return False

    def _emit(self, event_type: str, **kwargs: Any) -> None:
        for cb in list(self._event_handlers.get(event_type, [])):
            cb(**kwargs)

    # -----------------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------------

    def _serialize_neuron(self, neuron: Neuron) -> Dict[str, Any]:
        return {
            "id": neuron.id,
            "label": neuron.label,
            "activation": neuron.activation,
            "buffer": neuron.buffer,
            "input_value": neuron.input_value,
            "lower_bound": neuron.lower_bound,
            "upper_bound": neuron.upper_bound,
            "increment": neuron.increment,
            "x": neuron.x,
            "y": neuron.y,
            "clamped": neuron.clamped,
            "update_priority": neuron.update_priority,
            "target_value": neuron.target_value,
            "update_rule": self.registries.neuron_rules.describe(neuron.update_rule),
        }

    def _serialize_synapse(self, syn: Synapse) -> Dict[str, Any]:
        responder = syn.spike_responder
        return {
            "id": syn.id,
            "source": syn.source.id,
            "target": syn.target.id,
            "strength": syn.strength,
            "lower_bound": syn.lower_bound,
            "upper_bound": syn.upper_bound,
            "increment": syn.increment,
            "psr": syn.psr,
            "send_weighted_input": syn.send_weighted_input,
            "clamped": syn.clamped,
            "learning_rule": self.registries.synapse_rules.describe(syn.learning_rule),
            "spike_responder": (
                self.registries.spike_responders.describe(responder) if responder else None
            ),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Flat, JSON-safe description of the whole network."""
        return {
            "version": FORMAT_VERSION,
            "time": self.time,
            "iteration": self.iteration,
            "time_step": self.time_step,
            "commit_policy": self.commit_policy,
            "seed": self.seed,
            "rng_state": generator_state(self.rng),
            "random_bounds": [self.random_lower, self.random_upper],
            "id_counters": dict(self._id_counters),
            "neurons": [self._serialize_neuron(n) for n in self.neurons.values()],
            "synapses": [self._serialize_synapse(s) for s in self.synapses.values()],
            "groups": [
                {
                    "id": g.id,
                    "label": g.label,
                    "neurons": [n.id for n in g.neurons],
                    "synapses": [s.id for s in g.synapses],
                }
                for g in self.groups.values()
            ],
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        registries: Optional[Registries] = None,
        config: Optional[SimnetConfig] = None,
    ) -> "Network":
        """Rebuild a network produced by ``to_dict``."""
        net = cls(config=config, registries=registries, seed=data.get("seed"))
        net._populate(data)
        return net

    def _populate(self, data: Dict[str, Any]) -> None:
        version = data.get("version", FORMAT_VERSION)
        if version > FORMAT_VERSION:
            raise ValueError(f"Unsupported network format version {version}")

        self.time_step = data.get("time_step", self.time_step)
        self.commit_policy = data.get("commit_policy", self.commit_policy)
        lower, upper = data.get("random_bounds", [self.random_lower, self.random_upper])
        self.set_random_bounds(lower, upper)
        if "rng_state" in data:
            set_generator_state(self.rng, data["rng_state"])

        for nd in data.get("neurons", []):
            rule_data = nd["update_rule"]
            rule = self.registries.neuron_rules.build(rule_data)
            neuron = Neuron(self, rule, neuron_id=nd["id"], label=nd.get("label", ""))
            neuron.lower_bound = nd.get("lower_bound", neuron.lower_bound)
            neuron.upper_bound = nd.get("upper_bound", neuron.upper_bound)
            neuron.increment = nd.get("increment", neuron.increment)
            neuron.input_value = nd.get("input_value", 0.0)
            neuron.target_value = nd.get("target_value", 0.0)
            neuron.clamped = nd.get("clamped", False)
            neuron.buffer = nd.get("buffer", 0.0)
            neuron._x = nd.get("x", 0.0)
            neuron._y = nd.get("y", 0.0)
            neuron._update_priority = nd.get("update_priority", 0)
            neuron.force_set_activation(nd.get("activation", 0.0))
            # Neuron() ran rule.init; put the saved dynamic state back.
            if rule_data.get("state"):
                rule.set_state(rule_data["state"])
            self.add_neuron(neuron)

        for sd in data.get("synapses", []):
            responder_data = sd.get("spike_responder")
            syn = Synapse(
                self.get_neuron(sd["source"]),
                self.get_neuron(sd["target"]),
                strength=sd["strength"],
                synapse_id=sd["id"],
                learning_rule=self.registries.synapse_rules.build(sd["learning_rule"]),
                spike_responder=(
                    self.registries.spike_responders.build(responder_data)
                    if responder_data else None
                ),
            )
            syn.lower_bound = sd.get("lower_bound", syn.lower_bound)
            syn.upper_bound = sd.get("upper_bound", syn.upper_bound)
            syn.increment = sd.get("increment", syn.increment)
            syn.send_weighted_input = sd.get("send_weighted_input", True)
            syn.clamped = sd.get("clamped", False)
            self.add_synapse(syn)
            syn.psr = sd.get("psr", 0.0)

        for gd in data.get("groups", []):
            group = self.add_group(gd.get("neurons", []), label=gd.get("label", ""), group_id=gd["id"])
            for sid in gd.get("synapses", []):
                group.add_synapse(sid)

        self._id_counters.update(data.get("id_counters", {}))
        self.time = data.get("time", 0.0)
        self.iteration = data.get("iteration", 0)

    def checkpoint(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Save state; ``.msgpack`` paths are binary, anything else JSON.

        Args:
            path: Destination file (default from ``simnet_paths``).

        Returns:
            The path written.
        """
        target = Path(path) if path is not None else simnet_paths.get_checkpoint_path()
        target.parent.mkdir(parents=True, exist_ok=True)
        data = self.to_dict()
        if target.suffix == ".msgpack":
            with open(target, "wb") as f:
                msgpack.pack(data, f, use_bin_type=True)
        else:
            with open(target, "w") as f:
                json.dump(data, f, indent=2)
        logger.info("Checkpoint saved to %s (%d neurons, %d synapses)",
                    target, len(self.neurons), len(self.synapses))
        return target

    def restore(self, path: Optional[Union[str, Path]] = None) -> None:
        """Replace this network's contents with a checkpoint.

        Event handlers stay registered; they see ``model_cleared`` followed
        by the add events of the restored members.
        """
        source = Path(path) if path is not None else simnet_paths.get_checkpoint_path()
        if source.suffix == ".msgpack":
            with open(source, "rb") as f:
                data = msgpack.unpack(f, raw=False)
        else:
            with open(source, "r") as f:
                data = json.load(f)
        self.clear_all()
        self.seed = data.get("seed", self.seed)
        self.rng = np.random.default_rng(self.seed)
        self._populate(data)
        logger.info("Checkpoint restored from %s", source)

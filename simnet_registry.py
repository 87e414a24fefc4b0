"""
Explicit name → constructor registries for rules and responders.

Registries are plain values: build one with ``build_default_registries()``,
optionally register extra variants, and hand it to ``Network``.  There is
no module-level singleton, so two networks can carry different rule sets.

Persistence goes through ``describe`` / ``build``, which produce and
consume ``{"type", "params", "state"}`` dicts.  Noisy rules add
``noise_generator`` (Randomizer parameters) and ``noise_state`` (its
generator state).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from simnet_errors import UnknownRuleError
from spike_responders import BUILTIN_RESPONDERS
from synapse_rules import BUILTIN_SYNAPSE_RULES, StaticRule
from update_rules import BUILTIN_RULES, NoisyRule, Randomizer

logger = logging.getLogger("simnet.registry")


class ComponentRegistry:
    """Maps registry names to factories for one kind of component.

    Args:
        kind: Human-readable kind used in error messages.
        name_attr: Class attribute holding a component's registry name.
    """

    def __init__(self, kind: str, name_attr: str):
        self.kind = kind
        self.name_attr = name_attr
        self._factories: Dict[str, Callable[..., Any]] = {}

    def register(self, name: str, factory: Callable[..., Any], replace: bool = False) -> None:
        if name in self._factories and not replace:
            raise ValueError(f"{self.kind} '{name}' already registered")
        self._factories[name] = factory
        logger.debug("Registered %s '%s'", self.kind, name)

    def register_class(self, cls: type) -> None:
        self.register(getattr(cls, self.name_attr), cls)

    def create(self, name: str, **params: Any) -> Any:
        factory = self._factories.get(name)
        if factory is None:
            raise UnknownRuleError(self.kind, name, self._factories)
        return factory(**params)

    def names(self) -> List[str]:
        return list(self._factories)

    def __contains__(self, name: str) -> bool:
        return name in self._factories

    def __len__(self) -> int:
        return len(self._factories)

    # --- persistence -------------------------------------------------------

    def describe(self, component: Any) -> Dict[str, Any]:
        """Serializable description of a component instance."""
        data = {
            "type": getattr(component, self.name_attr),
            "params": component.get_params(),
            "state": component.get_state(),
        }
        if isinstance(component, NoisyRule):
            data["noise_generator"] = component.noise_generator.get_params()
            data["noise_state"] = component.noise_generator.get_state()
        return data

    def build(self, data: Dict[str, Any]) -> Any:
        """Inverse of ``describe``."""
        component = self.create(data["type"], **data.get("params", {}))
        if "noise_generator" in data and isinstance(component, NoisyRule):
            component.noise_generator = Randomizer.from_params(data["noise_generator"])
            if "noise_state" in data:
                component.noise_generator.set_state(data["noise_state"])
        state = data.get("state")
        if state:
            component.set_state(state)
        return component


@dataclass
class Registries:
    """The three registries a network resolves names against."""

    neuron_rules: ComponentRegistry
    spike_responders: ComponentRegistry
    synapse_rules: ComponentRegistry


def build_default_registries() -> Registries:
    """Fresh registries holding every built-in variant."""
    neuron_rules = ComponentRegistry("neuron update rule", "rule_name")
    for cls in BUILTIN_RULES:
        neuron_rules.register_class(cls)

    spike_responders = ComponentRegistry("spike responder", "responder_name")
    for cls in BUILTIN_RESPONDERS:
        spike_responders.register_class(cls)

    synapse_rules = ComponentRegistry("synapse learning rule", "rule_name")
    for cls in BUILTIN_SYNAPSE_RULES:
        synapse_rules.register_class(cls)
    # Clamped-weight synapses are static synapses.
    synapse_rules.register("Clamped", StaticRule)

    return Registries(
        neuron_rules=neuron_rules,
        spike_responders=spike_responders,
        synapse_rules=synapse_rules,
    )

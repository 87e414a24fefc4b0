"""
Topology builders: create synapses between existing neurons in bulk.

Each builder takes a source and a target list of neurons that are already
registered in the network.  ``connect_neurons()`` validates every endpoint
before creating anything, so a stale neuron leaves the network untouched,
then returns the new synapses in (source, target) iteration order.

The synapse policy is a ``synapse_factory(source, target) -> Synapse``.
The default builds a static synapse of strength 1.

    AllToAll   every source to every target
    OneToOne   sources[i] to targets[i], optionally both directions
    Sparse     each pair independently with probability connection_density
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from network_core import Network, Neuron, Synapse
from simnet_errors import InvalidParameterError

logger = logging.getLogger("simnet.connections")

SynapseFactory = Callable[[Neuron, Neuron], Synapse]


def static_synapse(source: Neuron, target: Neuron) -> Synapse:
    """Strength-1 synapse whose weight never learns."""
    return Synapse(source, target, strength=1.0, learning_rule="Static")


class ConnectNeurons:
    """Base class for topology builders.

    Subclass and override ``pairs``.

    Args:
        network: Network holding every source and target.
        sources: Presynaptic neurons (objects or ids).
        targets: Postsynaptic neurons (objects or ids).
        synapse_factory: Builds one synapse per pair.
    """

    def __init__(
        self,
        network: Network,
        sources: Iterable,
        targets: Iterable,
        synapse_factory: Optional[SynapseFactory] = None,
    ):
        self.network = network
        self.sources = list(sources)
        self.targets = list(targets)
        self.synapse_factory = synapse_factory or static_synapse

    def pairs(self, sources: Sequence[Neuron], targets: Sequence[Neuron]) -> Iterator[Tuple[Neuron, Neuron]]:
        raise NotImplementedError

    def connect_neurons(self) -> List[Synapse]:
        net = self.network
        net._check_not_updating("connect neurons")
        sources = [net._resolve_neuron(ref) for ref in self.sources]
        targets = [net._resolve_neuron(ref) for ref in self.targets]
        planned = list(self.pairs(sources, targets))

        created = []
        for source, target in planned:
            created.append(net.add_synapse(self.synapse_factory(source, target)))
        logger.debug(
            "%s created %d synapses (%d sources, %d targets)",
            type(self).__name__, len(created), len(sources), len(targets),
        )
        return created


class AllToAll(ConnectNeurons):
    """Connect every source to every target.

    Self-connections are made when a neuron is in both lists, unless
    ``allow_self_connection`` is False.
    """

    def __init__(
        self,
        network: Network,
        sources: Iterable,
        targets: Iterable,
        synapse_factory: Optional[SynapseFactory] = None,
        allow_self_connection: bool = True,
    ):
        super().__init__(network, sources, targets, synapse_factory)
        self.allow_self_connection = allow_self_connection

    def pairs(self, sources, targets):
        for source in sources:
            for target in targets:
                if source is target and not self.allow_self_connection:
                    continue
                yield source, target


class OneToOne(ConnectNeurons):
    """Connect ``sources[i]`` to ``targets[i]``."""

    def __init__(
        self,
        network: Network,
        sources: Iterable,
        targets: Iterable,
        synapse_factory: Optional[SynapseFactory] = None,
        bidirectional: bool = False,
    ):
        super().__init__(network, sources, targets, synapse_factory)
        self.bidirectional = bidirectional

    def pairs(self, sources, targets):
        if len(sources) != len(targets):
            raise ValueError(
                f"OneToOne needs equal-sized lists ({len(sources)} sources, "
                f"{len(targets)} targets)"
            )
        for source, target in zip(sources, targets):
            yield source, target
            if self.bidirectional:
                yield target, source


class Sparse(ConnectNeurons):
    """Connect each ordered pair with probability ``connection_density``.

    Draws come from a generator seeded with ``seed`` when given, otherwise
    from the network's own generator.
    """

    def __init__(
        self,
        network: Network,
        sources: Iterable,
        targets: Iterable,
        synapse_factory: Optional[SynapseFactory] = None,
        connection_density: float = 0.1,
        allow_self_connection: bool = False,
        seed: Optional[int] = None,
    ):
        if not 0.0 <= connection_density <= 1.0:
            raise InvalidParameterError(
                f"connection_density must be in [0, 1] (got {connection_density})"
            )
        super().__init__(network, sources, targets, synapse_factory)
        self.connection_density = connection_density
        self.allow_self_connection = allow_self_connection
        self.seed = seed

    def pairs(self, sources, targets):
        rng = np.random.default_rng(self.seed) if self.seed is not None else self.network.rng
        mask = rng.random((len(sources), len(targets))) < self.connection_density
        for i, j in zip(*np.nonzero(mask)):
            source, target = sources[i], targets[j]
            if source is target and not self.allow_self_connection:
                continue
            yield source, target

"""Tests for Network structure, stepping protocol, events and groups."""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from network_core import Network, Neuron, StepResult, Synapse
from simnet_config import load_config
from simnet_errors import (
    InvalidParameterError,
    InvariantViolationError,
    StaleReferenceError,
    StepInProgressError,
    UnknownRuleError,
)
from synapse_rules import HebbianRule, OjaRule, StaticRule
from update_rules import (
    AdditiveRule,
    ClampedRule,
    IzhikevichRule,
    LinearRule,
    NeuronUpdateRule,
    TimeType,
)


class _ExplodingRule(NeuronUpdateRule):
    rule_name = "Exploding"

    def update(self, neuron):
        raise ValueError("boom")


class _MutatingRule(NeuronUpdateRule):
    rule_name = "Mutating"

    def update(self, neuron):
        neuron.network.create_neuron()


class _ReentrantRule(NeuronUpdateRule):
    rule_name = "Reentrant"

    def update(self, neuron):
        neuron.network.step()


def _chain(net, n=3):
    """A → B → C ... with unit weights; A is driven by external input."""
    neurons = [net.create_neuron("Linear") for _ in range(n)]
    for pre, post in zip(neurons, neurons[1:]):
        net.connect(pre, post, strength=1.0)
    neurons[0].input_value = 1.0
    return neurons


class TestNeuronBasics:

    def test_auto_ids(self):
        net = Network()
        a = net.create_neuron()
        b = net.create_neuron()
        assert (a.id, b.id) == ("Neuron_1", "Neuron_2")

    def test_explicit_duplicate_id_rejected(self):
        net = Network()
        net.create_neuron(neuron_id="x")
        with pytest.raises(ValueError):
            net.create_neuron(neuron_id="x")

    def test_auto_id_skips_taken(self):
        net = Network()
        net.create_neuron(neuron_id="Neuron_1")
        assert net.create_neuron().id == "Neuron_2"

    def test_defaults(self):
        net = Network()
        n = net.create_neuron()
        assert (n.lower_bound, n.upper_bound, n.increment) == (-1.0, 1.0, 0.1)
        assert isinstance(n.update_rule, LinearRule)
        assert n.type_name == "Linear"

    def test_clamped_ignores_set_activation(self):
        net = Network()
        n = net.create_neuron()
        n.clamped = True
        n.activation = 0.5
        assert n.activation == 0.0
        n.force_set_activation(0.5)
        assert n.activation == 0.5

    def test_clamped_neuron_keeps_value_through_step(self):
        net = Network()
        n = net.create_neuron()
        n.force_set_activation(0.3)
        n.clamped = True
        n.input_value = 1.0
        net.step()
        assert n.activation == 0.3

    def test_increment_saturates_and_notifies(self):
        net = Network()
        n = net.create_neuron()
        seen = []
        net.register_event_handler("neuron_changed", lambda **kw: seen.append(kw["neuron"]))
        n.force_set_activation(0.95)
        n.increment_activation()
        assert n.activation == 1.0
        n.increment_activation()
        assert n.activation == 1.0
        n.force_set_activation(-0.95)
        n.decrement_activation()
        assert n.activation == -1.0
        assert seen == [n, n, n]

    def test_increment_applies_to_clamped(self):
        net = Network()
        n = net.create_neuron()
        n.clamped = True
        n.increment_activation()
        assert n.activation == pytest.approx(0.1)

    def test_check_bounds(self):
        net = Network()
        n = net.create_neuron()
        n.force_set_activation(5.0)
        n.check_bounds()
        assert n.activation == 1.0

    def test_location_fires_moved(self):
        net = Network()
        n = net.create_neuron()
        moved = []
        net.register_event_handler("neuron_moved", lambda neuron: moved.append(neuron))
        n.set_location(3.0, 4.0)
        n.x = 5.0
        assert (n.x, n.y) == (5.0, 4.0)
        assert moved == [n, n]

    def test_weighted_inputs(self):
        net = Network()
        a = net.create_neuron(ClampedRule())
        b = net.create_neuron(ClampedRule())
        c = net.create_neuron(LinearRule(bias=0.1))
        a.force_set_activation(0.5)
        b.force_set_activation(-1.0)
        net.connect(a, c, strength=2.0)
        s = net.connect(b, c, strength=0.5)
        c.input_value = 0.2
        assert c.get_weighted_inputs() == pytest.approx(0.2 + 1.0 - 0.5 + 0.1)
        s.send_weighted_input = False
        assert c.get_weighted_inputs() == pytest.approx(0.2 + 1.0 + 0.1)

    def test_input_statistics(self):
        net = Network()
        a = net.create_neuron(ClampedRule())
        b = net.create_neuron(ClampedRule())
        c = net.create_neuron()
        assert c.get_average_input() == 0.0
        a.force_set_activation(1.0)
        b.force_set_activation(0.5)
        net.connect(a, c, strength=2.0)
        net.connect(b, c, strength=4.0)
        assert c.get_summed_incoming_weights() == pytest.approx(6.0)
        assert c.get_total_input() == pytest.approx(1.5)
        assert c.get_average_input() == pytest.approx(0.75)
        assert c.get_number_of_active_inputs(0.75) == 1
        assert c.is_connected(a)
        assert a.is_connected(c)
        assert not a.is_connected(b)

    def test_total_input_ignores_strength_and_psr(self):
        net = Network()
        src = net.create_neuron("SpikingThreshold")
        c = net.create_neuron()
        syn = net.connect(src, c, strength=5.0)
        src.force_set_activation(1.0)
        syn.psr = 3.0
        assert c.get_total_input() == 1.0

    def test_input_and_output_roles(self):
        net = Network()
        a, b, c = _chain(net)
        assert a.is_input and not a.is_output
        assert not b.is_input and not b.is_output
        assert c.is_output and not c.is_input

    def test_round_activation(self):
        net = Network()
        n = net.create_neuron()
        n.activation = 0.123456
        n.round(2)
        assert n.activation == 0.12
        n.clamped = True
        n.force_set_activation(0.987)
        n.round(1)
        assert n.activation == 0.987


class TestUpdateRuleAssignment:

    def test_assign_by_name(self):
        net = Network()
        n = net.create_neuron()
        n.update_rule = "Binary"
        assert n.type_name == "Binary"

    def test_unknown_name(self):
        net = Network()
        n = net.create_neuron()
        with pytest.raises(UnknownRuleError):
            n.update_rule = "NoSuchRule"
        with pytest.raises(UnknownRuleError):
            net.create_neuron("NoSuchRule")

    def test_change_event_carries_rules(self):
        net = Network()
        n = net.create_neuron()
        events = []
        net.register_event_handler("neuron_changed", lambda **kw: events.append(kw))
        old = n.update_rule
        new = ClampedRule()
        n.update_rule = new
        assert events == [{"neuron": n, "old_rule": old, "new_rule": new}]

    def test_time_type_follows_rules(self):
        net = Network()
        n = net.create_neuron()
        assert net.time_type is TimeType.DISCRETE
        n.update_rule = AdditiveRule()
        assert net.time_type is TimeType.CONTINUOUS
        n.update_rule = LinearRule()
        assert net.time_type is TimeType.DISCRETE
        m = net.create_neuron(IzhikevichRule())
        assert net.time_type is TimeType.CONTINUOUS
        net.remove_neuron(m)
        assert net.time_type is TimeType.DISCRETE

    def test_rule_init_called_on_assignment(self):
        net = Network()
        n = net.create_neuron()
        n.force_set_activation(-50.0)
        rule = IzhikevichRule()
        n.update_rule = rule
        assert rule.recovery == pytest.approx(0.2 * -50.0)


class TestStepping:

    def test_deferred_commit_uses_previous_activations(self):
        net = Network()
        a, b, c = _chain(net)
        net.step()
        assert (a.activation, b.activation, c.activation) == (1.0, 0.0, 0.0)
        net.step()
        assert (a.activation, b.activation, c.activation) == (1.0, 1.0, 0.0)
        net.step()
        assert c.activation == 1.0

    def test_deferred_is_order_independent(self):
        def run(priorities):
            net = Network()
            neurons = _chain(net)
            for n, p in zip(neurons, priorities):
                n.update_priority = p
            net.run(2)
            return [n.activation for n in neurons]

        assert run([0, 0, 0]) == run([2, 1, 0]) == run([0, 5, -3])

    def test_progressive_commit_propagates_within_step(self):
        net = Network(load_config({"simulation": {"commit_policy": "progressive"}}))
        a, b, c = _chain(net)
        a.update_priority = 0
        b.update_priority = 1
        c.update_priority = 2
        net.step()
        assert (a.activation, b.activation, c.activation) == (1.0, 1.0, 1.0)

    def test_progressive_same_priority_cohort_is_buffered(self):
        net = Network()
        net.commit_policy = "progressive"
        a, b, c = _chain(net)
        net.step()
        assert (b.activation, c.activation) == (0.0, 0.0)

    def test_invalid_commit_policy(self):
        net = Network()
        with pytest.raises(InvalidParameterError):
            net.commit_policy = "eager"

    def test_priority_order(self):
        net = Network()
        a = net.create_neuron()
        b = net.create_neuron()
        c = net.create_neuron(update_priority=-1)
        assert net.priority_order() == [c, a, b]
        a.update_priority = 5
        assert net.priority_order() == [c, b, a]
        b.update_priority = 5
        assert net.priority_order() == [c, a, b]
        assert net.verify_integrity()

    def test_discrete_time_advances_by_one(self):
        net = Network()
        net.create_neuron()
        result = net.step()
        assert isinstance(result, StepResult)
        assert (net.time, net.iteration) == (1, 1)
        assert (result.time, result.iteration) == (1, 1)

    def test_continuous_time_advances_by_time_step(self):
        net = Network(load_config({"simulation": {"time_step": 0.25}}))
        net.create_neuron(AdditiveRule())
        net.run(4)
        assert net.time == pytest.approx(1.0)
        assert net.iteration == 4

    def test_time_step_must_be_positive(self):
        net = Network()
        with pytest.raises(InvalidParameterError):
            net.time_step = 0.0

    def test_network_updated_event(self):
        net = Network()
        net.create_neuron()
        results = []
        net.register_event_handler("network_updated", lambda result: results.append(result))
        net.run(3)
        assert [r.iteration for r in results] == [1, 2, 3]

    def test_exception_restores_state(self):
        net = Network()
        net.commit_policy = "progressive"
        a = net.create_neuron(update_priority=0)
        a.input_value = 1.0
        net.create_neuron(_ExplodingRule(), update_priority=1)
        with pytest.raises(ValueError, match="boom"):
            net.step()
        assert a.activation == 0.0
        assert (net.time, net.iteration) == (0.0, 0)
        assert not net.is_updating

    def test_structural_mutation_during_step_rejected(self):
        net = Network()
        net.create_neuron(_MutatingRule())
        with pytest.raises(StepInProgressError):
            net.step()
        assert len(net.neurons) == 1
        net.create_neuron()
        assert len(net.neurons) == 2

    def test_reentrant_step_rejected(self):
        net = Network()
        net.create_neuron(_ReentrantRule())
        with pytest.raises(StepInProgressError):
            net.step()
        assert net.iteration == 0


class TestLearning:

    def test_hebbian_uses_pre_commit_activations(self):
        net = Network()
        a = net.create_neuron(ClampedRule())
        b = net.create_neuron(ClampedRule())
        a.force_set_activation(1.0)
        b.force_set_activation(0.5)
        syn = net.connect(a, b, strength=1.0, learning_rule=HebbianRule(learning_rate=0.1))
        net.step()
        assert syn.strength == pytest.approx(1.05)

    def test_clamped_synapse_does_not_learn(self):
        net = Network()
        a = net.create_neuron(ClampedRule())
        b = net.create_neuron(ClampedRule())
        a.force_set_activation(1.0)
        b.force_set_activation(1.0)
        syn = net.connect(a, b, strength=1.0, learning_rule="Hebbian")
        syn.clamped = True
        net.run(5)
        assert syn.strength == 1.0

    def test_hebbian_clips_to_bounds(self):
        net = Network()
        a = net.create_neuron(ClampedRule())
        a.force_set_activation(1.0)
        syn = net.connect(a, a, strength=9.95, learning_rule=HebbianRule(learning_rate=1.0))
        net.step()
        assert syn.strength == syn.upper_bound

    def test_oja(self):
        net = Network()
        a = net.create_neuron(ClampedRule())
        b = net.create_neuron(ClampedRule())
        a.force_set_activation(1.0)
        b.force_set_activation(0.5)
        syn = net.connect(a, b, strength=1.0, learning_rule=OjaRule(learning_rate=0.1))
        net.step()
        assert syn.strength == pytest.approx(1.0 + 0.1 * 0.5 * (1.0 - 0.5))

    def test_default_learning_rule_is_static(self):
        net = Network()
        a = net.create_neuron()
        syn = net.connect(a, a)
        assert isinstance(syn.learning_rule, StaticRule)


class TestStructure:

    def test_connect_registers_both_ends(self):
        net = Network()
        a = net.create_neuron()
        b = net.create_neuron()
        syn = net.connect(a, b)
        assert syn.id == "Synapse_1"
        assert a.fan_out == [syn]
        assert b.fan_in == [syn]
        assert net.find_synapse(a, b) is syn
        assert net.find_synapse(b, a) is None

    def test_unregistered_synapse_not_in_fan_lists(self):
        net = Network()
        a = net.create_neuron()
        b = net.create_neuron()
        syn = Synapse(a, b)
        assert a.fan_out == []
        net.add_synapse(syn)
        assert a.fan_out == [syn]

    def test_synapse_defaults(self):
        net = Network()
        a = net.create_neuron()
        syn = net.connect(a, a)
        assert (syn.lower_bound, syn.upper_bound, syn.increment) == (-10.0, 10.0, 1.0)
        syn.strength = 9.5
        syn.increment_weight()
        assert syn.strength == 10.0
        syn.decrement_weight()
        assert syn.strength == 9.0

    def test_remove_neuron_cascades(self):
        net = Network()
        a, b, c = _chain(net)
        net.connect(b, b)
        net.remove_neuron(b)
        assert len(net.synapses) == 0
        assert a.fan_out == []
        assert c.fan_in == []
        assert net.verify_integrity()

    def test_delete_connected_synapses_idempotent(self):
        net = Network()
        a, b, c = _chain(net)
        net.connect(b, b)
        b.delete_connected_synapses()
        b.delete_connected_synapses()
        assert net.synapses == {}
        assert net.verify_integrity()

    def test_delete_fan_in_and_fan_out_separately(self):
        net = Network()
        a, b, c = _chain(net)
        b.delete_fan_in()
        assert b.fan_in == [] and a.fan_out == []
        assert len(b.fan_out) == 1
        b.delete_fan_out()
        assert b.fan_out == [] and c.fan_in == []
        assert net.synapses == {}
        assert net.verify_integrity()

    def test_stale_references(self):
        net = Network()
        a = net.create_neuron()
        net.remove_neuron(a)
        with pytest.raises(StaleReferenceError):
            net.remove_neuron(a)
        with pytest.raises(KeyError):
            net.get_neuron(a.id)
        other = Network().create_neuron()
        with pytest.raises(ValueError):
            net.add_neuron(other)

    def test_connect_to_removed_neuron_rejected(self):
        net = Network()
        a = net.create_neuron()
        b = net.create_neuron()
        net.remove_neuron(b)
        with pytest.raises(StaleReferenceError):
            net.connect(a, b)
        assert net.synapses == {}

    def test_remove_synapse_twice(self):
        net = Network()
        a = net.create_neuron()
        syn = net.connect(a, a)
        net.remove_synapse(syn)
        with pytest.raises(StaleReferenceError):
            net.remove_synapse(syn)

    def test_rewire(self):
        net = Network()
        a = net.create_neuron()
        b = net.create_neuron()
        c = net.create_neuron()
        syn = net.connect(a, b)
        net.rewire_synapse(syn, target=c)
        assert syn.target is c
        assert b.fan_in == []
        assert c.fan_in == [syn]
        assert net.verify_integrity()

    def test_verify_integrity_detects_corruption(self):
        net = Network()
        a = net.create_neuron()
        b = net.create_neuron()
        syn = net.connect(a, b)
        del b._fan_in[syn.id]
        with pytest.raises(InvariantViolationError):
            net.verify_integrity()

    def test_copy_neurons(self):
        net = Network()
        a = net.create_neuron(LinearRule(slope=2.0))
        b = net.create_neuron()
        outside = net.create_neuron()
        a.set_location(1.0, 1.0)
        a.force_set_activation(0.4)
        net.connect(a, b, strength=0.7)
        net.connect(a, outside)
        copies = net.copy_neurons([a, b], dx=10.0, dy=5.0)
        a2, b2 = copies
        assert len(net.neurons) == 5
        assert a2.update_rule is not a.update_rule
        assert a2.update_rule.slope == 2.0
        assert (a2.x, a2.y) == (11.0, 6.0)
        assert a2.activation == 0.4
        assert [s.target for s in a2.fan_out] == [b2]
        assert a2.fan_out[0].strength == 0.7
        assert net.verify_integrity()

    def test_clear_all(self):
        net = Network()
        _chain(net)
        net.add_group(net.neuron_list())
        net.run(2)
        cleared = []
        net.register_event_handler("model_cleared", lambda: cleared.append(True))
        net.clear_all()
        assert cleared == [True]
        assert (net.neurons, net.synapses, net.groups) == ({}, {}, {})
        assert net.time == 0.0
        assert net.create_neuron().id == "Neuron_1"

    def test_clear_activations(self):
        net = Network()
        a, b, c = _chain(net)
        net.run(3)
        net.clear_activations()
        assert [n.activation for n in (a, b, c)] == [0.0, 0.0, 0.0]
        assert a.input_value == 0.0


class TestRandomization:

    def test_seeded_randomize_reproducible(self):
        def values():
            net = Network(seed=3)
            neurons = [net.create_neuron() for _ in range(5)]
            net.randomize_neurons()
            return [n.activation for n in neurons]

        first = values()
        assert first == values()
        assert all(-1.0 <= v <= 1.0 for v in first)

    def test_randomize_weights_uses_random_bounds(self):
        net = Network(seed=1)
        a = net.create_neuron()
        syns = [net.connect(a, a) for _ in range(20)]
        net.set_random_bounds(0.5, 0.75)
        net.randomize_weights()
        assert all(0.5 <= s.strength <= 0.75 for s in syns)

    def test_invalid_random_bounds(self):
        with pytest.raises(InvalidParameterError):
            Network().set_random_bounds(1.0, -1.0)

    def test_unbounded_rule_randomize_not_clipped(self):
        net = Network(seed=2)
        n = net.create_neuron(IzhikevichRule())
        values = set()
        for _ in range(20):
            n.randomize()
            values.add(n.activation)
        assert any(v > 1.0 or v < -1.0 for v in values)

    def test_randomize_bias(self):
        net = Network(seed=2)
        n = net.create_neuron(LinearRule())
        n.randomize_bias(0.2, 0.3)
        assert 0.2 <= n.update_rule.bias <= 0.3


class TestEvents:

    def test_unknown_event_type(self):
        net = Network()
        with pytest.raises(ValueError):
            net.register_event_handler("spikes", lambda **kw: None)

    def test_structural_events(self):
        net = Network()
        log = []
        for event in ("neuron_added", "neuron_removed", "synapse_added",
                      "synapse_removed", "group_added", "group_removed"):
            net.register_event_handler(event, lambda _e=event, **kw: log.append(_e))
        a = net.create_neuron()
        b = net.create_neuron()
        net.connect(a, b)
        g = net.add_group([a])
        net.remove_group(g)
        net.remove_neuron(a)
        assert log == [
            "neuron_added", "neuron_added", "synapse_added",
            "group_added", "group_removed",
            "synapse_removed", "neuron_removed",
        ]

    def test_unregister(self):
        net = Network()
        seen = []
        handler = lambda neuron: seen.append(neuron)
        net.register_event_handler("neuron_added", handler)
        assert net.unregister_event_handler("neuron_added", handler)
        assert not net.unregister_event_handler("neuron_added", handler)
        net.create_neuron()
        assert seen == []


class TestGroups:

    def test_group_membership(self):
        net = Network()
        a = net.create_neuron()
        b = net.create_neuron()
        g = net.add_group([a, b], label="layer")
        assert len(g) == 2
        assert a.parent_group is g
        net.remove_neuron(a)
        assert len(g) == 1
        assert a not in g

    def test_neuron_moves_between_groups(self):
        net = Network()
        a = net.create_neuron()
        g1 = net.add_group([a])
        g2 = net.add_group([a])
        assert a.parent_group is g2
        assert len(g1) == 0

    def test_set_update_rule_copies_per_neuron(self):
        net = Network()
        g = net.add_group([net.create_neuron() for _ in range(3)])
        g.set_update_rule(IzhikevichRule(a=0.1))
        rules = [n.update_rule for n in g]
        assert len({id(r) for r in rules}) == 3
        assert all(r.a == 0.1 for r in rules)
        assert net.time_type is TimeType.CONTINUOUS

    def test_bulk_clamp_and_clear(self):
        net = Network()
        g = net.add_group([net.create_neuron() for _ in range(2)])
        for n in g:
            n.force_set_activation(0.5)
        g.clear()
        assert list(g.activations()) == [0.0, 0.0]
        g.set_clamped(True)
        assert all(n.clamped for n in g)

    def test_remove_group_keeps_neurons(self):
        net = Network()
        a = net.create_neuron()
        g = net.add_group([a])
        net.remove_group(g)
        assert a.parent_group is None
        assert a.id in net.neurons
        with pytest.raises(StaleReferenceError):
            net.remove_group(g)


class TestSpikingIntegration:

    def test_spiked_ids_reported(self):
        net = Network(load_config({"simulation": {"time_step": 0.5}}))
        n = net.create_neuron(IzhikevichRule(i_bg=14.0))
        n.clear()
        spikes = [r for r in net.run(400) if r.spiked_neuron_ids]
        assert spikes
        assert all(r.spiked_neuron_ids == [n.id] for r in spikes)

    def test_neuron_constructed_free_standing(self):
        net = Network()
        n = Neuron(net, "Binary")
        assert n.id not in net.neurons
        net.add_neuron(n)
        assert net.get_neuron(n.id) is n

"""Tests for to_dict/from_dict and checkpoint/restore."""

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from network_core import Network
from simnet_errors import UnknownRuleError
from spike_responders import Probabilistic, Step
from synapse_rules import HebbianRule
from update_rules import (
    DecayRule,
    IzhikevichRule,
    LinearRule,
    RandomRule,
    Randomizer,
    SigmoidalRule,
    StochasticRule,
)


def _build():
    net = Network(seed=5)
    a = net.create_neuron(LinearRule(slope=0.5, bias=0.1), label="in")
    b = net.create_neuron(SigmoidalRule(implementation="tanh"), update_priority=2)
    c = net.create_neuron(IzhikevichRule(i_bg=14.0))
    d = net.create_neuron(DecayRule(relative=True))
    e = net.create_neuron(RandomRule(Randomizer("normal", seed=8)))
    a.input_value = 0.8
    a.set_location(1.0, 2.0)
    d.clamped = True
    c.force_set_activation(-65.0)
    c.update_rule.recovery = -13.0
    net.connect(a, b, strength=0.6, learning_rule=HebbianRule(learning_rate=0.05))
    net.connect(c, d, strength=1.5, spike_responder=Step(response_duration=3.0))
    net.connect(b, c, strength=4.0)
    net.connect(e, a, strength=0.1)
    g = net.add_group([a, b], label="front")
    g.add_synapse(next(iter(net.synapses)))
    return net


class TestDictRoundTrip:

    def test_round_trip_is_exact(self):
        net = _build()
        net.run(5)
        data = net.to_dict()
        clone = Network.from_dict(data)
        assert clone.to_dict() == data
        assert clone.verify_integrity()

    def test_round_trip_through_json(self):
        net = _build()
        net.run(3)
        data = json.loads(json.dumps(net.to_dict()))
        clone = Network.from_dict(data)
        assert clone.to_dict() == net.to_dict()

    def test_izhikevich_state_restored(self):
        net = _build()
        net.run(10)
        rule = net.get_neuron("Neuron_3").update_rule
        clone = Network.from_dict(net.to_dict())
        cloned_rule = clone.get_neuron("Neuron_3").update_rule
        assert cloned_rule.recovery == pytest.approx(rule.recovery)
        assert cloned_rule.last_spike_time == rule.last_spike_time

    def test_priorities_and_groups_restored(self):
        net = _build()
        clone = Network.from_dict(net.to_dict())
        assert [n.id for n in clone.priority_order()] == [n.id for n in net.priority_order()]
        (group,) = clone.groups.values()
        assert group.label == "front"
        assert [n.id for n in group] == ["Neuron_1", "Neuron_2"]
        assert len(group.synapses) == 1

    def test_unknown_rule_in_data(self):
        data = _build().to_dict()
        data["neurons"][0]["update_rule"]["type"] = "Mystery"
        with pytest.raises(UnknownRuleError):
            Network.from_dict(data)

    def test_future_version_rejected(self):
        data = _build().to_dict()
        data["version"] = 99
        with pytest.raises(ValueError):
            Network.from_dict(data)


class TestCheckpoint:

    @pytest.mark.parametrize("name", ["net.json", "net.msgpack"])
    def test_checkpoint_restore_continues_identically(self, tmp_path, name):
        net = Network()
        a = net.create_neuron(LinearRule(slope=0.9))
        b = net.create_neuron(IzhikevichRule(i_bg=10.0))
        a.input_value = 0.5
        net.connect(a, b, strength=3.0)
        b.clear()
        net.run(20)
        path = net.checkpoint(tmp_path / name)
        assert path.exists()

        restored = Network()
        restored.restore(path)
        for _ in range(20):
            net.step()
            restored.step()
        assert restored.to_dict() == net.to_dict()

    def test_default_checkpoint_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SIMNET_HOME", str(tmp_path))
        net = _build()
        path = net.checkpoint()
        assert path == tmp_path.resolve() / "checkpoints" / "network.json"
        restored = Network()
        restored.restore()
        assert len(restored.neurons) == 5

    def test_restore_notifies_existing_handlers(self, tmp_path):
        path = _build().checkpoint(tmp_path / "net.json")
        net = Network()
        net.create_neuron()
        events = []
        net.register_event_handler("model_cleared", lambda: events.append("cleared"))
        net.register_event_handler("neuron_added", lambda neuron: events.append(neuron.id))
        net.restore(str(path))
        assert events[0] == "cleared"
        assert events[1:] == ["Neuron_1", "Neuron_2", "Neuron_3", "Neuron_4", "Neuron_5"]


def _seeded_mid_run():
    net = Network(seed=3)
    net.create_neuron(StochasticRule(firing_probability=0.4, seed=1))
    net.create_neuron(RandomRule(Randomizer(lower=-1.0, upper=1.0, seed=2)))
    net.create_neuron(LinearRule())
    src = net.create_neuron(IzhikevichRule(i_bg=14.0))
    dst = net.create_neuron(LinearRule())
    net.connect(src, dst, strength=1.0, spike_responder=Probabilistic(seed=4))
    net.run(5)
    return net


def _activations(net):
    return [n.activation for n in net.neuron_list()]


class TestGeneratorState:

    def test_random_streams_continue_after_round_trip(self):
        net = _seeded_mid_run()
        clone = Network.from_dict(json.loads(json.dumps(net.to_dict())))
        for _ in range(30):
            net.step()
            clone.step()
            assert _activations(clone) == _activations(net)

    @pytest.mark.parametrize("name", ["net.json", "net.msgpack"])
    def test_randomize_after_restore_matches(self, tmp_path, name):
        net = _seeded_mid_run()
        path = net.checkpoint(tmp_path / name)
        restored = Network()
        restored.restore(path)
        net.randomize_neurons()
        restored.randomize_neurons()
        assert _activations(restored) == _activations(net)
        net.step()
        restored.step()
        assert _activations(restored) == _activations(net)

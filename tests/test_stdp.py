"""Tests for STDP learning: LTP, LTD, coincident spikes, soft bounds."""

import math
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from network_core import Network
from simnet_errors import InvalidParameterError
from synapse_rules import STDPRule
from update_rules import SpikingThresholdRule


def _pair(strength=1.0, **stdp):
    net = Network()
    a = net.create_neuron(SpikingThresholdRule(), label="A")
    b = net.create_neuron(SpikingThresholdRule(), label="B")
    syn = net.connect(a, b, strength=strength, learning_rule=STDPRule(**stdp))
    return net, a, b, syn


class TestLTP:
    """Pre fires before post → strengthen."""

    def test_causal_strengthening(self):
        net, a, b, syn = _pair()
        a.input_value = 1.0
        net.step()  # t=0: A fires, psr jumps to strength
        a.input_value = 0.0
        net.step()  # t=1: B fires from the psr
        soft = (10.0 - 1.0) / 20.0
        assert syn.strength == pytest.approx(1.0 + 1.0 * math.exp(-1 / 20.0) * 0.01 * soft)

    def test_soft_bound_slows_near_ceiling(self):
        deltas = []
        for w in (1.0, 9.0):
            net, a, b, syn = _pair(strength=w)
            a.input_value = 1.0
            net.step()
            a.input_value = 0.0
            net.step()
            deltas.append(syn.strength - w)
        assert 0 < deltas[1] < deltas[0]


class TestLTD:
    """Pre fires after post → weaken."""

    def test_acausal_weakening(self):
        net, a, b, syn = _pair()
        b.input_value = 1.0
        net.step()  # t=0: B fires
        b.input_value = 0.0
        a.input_value = 1.0
        net.step()  # t=1: A fires
        assert syn.strength == pytest.approx(1.0 - 1.2 * math.exp(-1 / 20.0) * 0.01)


class TestEdgeCases:

    def test_coincident_spikes_half_ltp(self):
        net, a, b, syn = _pair(A_plus=2.0)
        a.input_value = 1.0
        b.input_value = 1.0
        net.step()
        soft = (10.0 - 1.0) / 20.0
        assert syn.strength == pytest.approx(1.0 + 2.0 * 0.5 * 0.01 * soft)

    def test_no_change_without_spikes(self):
        net, a, b, syn = _pair()
        net.run(5)
        assert syn.strength == 1.0

    def test_non_spiking_endpoint_is_noop(self):
        net = Network()
        a = net.create_neuron("Linear")
        b = net.create_neuron(SpikingThresholdRule())
        a.input_value = 1.0
        b.input_value = 1.0
        syn = net.connect(a, b, strength=1.0, learning_rule="STDP")
        net.run(3)
        assert syn.strength == 1.0

    @pytest.mark.parametrize("field", ["tau_plus", "tau_minus"])
    def test_time_constants_must_be_positive(self, field):
        with pytest.raises(InvalidParameterError):
            STDPRule(**{field: 0.0})

    def test_deep_copy_keeps_params(self):
        rule = STDPRule(tau_plus=5.0, A_minus=0.3)
        clone = rule.deep_copy()
        assert clone is not rule
        assert clone.get_params() == rule.get_params()

"""Simple usage example for simnet.

Builds a small input layer feeding a layer of Izhikevich neurons, runs it,
prints spikes and statistics, then checkpoints and restores the network.
"""

import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from connections import AllToAll
from network_core import Network
from simnet_monitoring import network_stats, network_summary
from update_rules import IzhikevichRule, LinearRule


def main():
    net = Network(seed=42)

    # Input layer: linear neurons driven by a constant external input
    inputs = [net.create_neuron(LinearRule(), label=f"in_{i}", x=0.0, y=float(i)) for i in range(3)]
    for i, n in enumerate(inputs):
        n.input_value = 0.3 * (i + 1)

    # Output layer: regular-spiking Izhikevich neurons, updated after the inputs
    outputs = [
        net.create_neuron(IzhikevichRule(), label=f"out_{i}", x=1.0, y=float(i), update_priority=1)
        for i in range(2)
    ]
    for n in outputs:
        n.clear()

    syns = AllToAll(net, inputs, outputs).connect_neurons()
    for syn in syns:
        syn.strength = 6.0
    net.add_group(outputs, label="output")

    print("=== Initial State ===")
    print(network_summary(net))

    print("\n=== Running 200 steps ===")
    spikes = {n.id: 0 for n in outputs}
    for result in net.run(200):
        for nid in result.spiked_neuron_ids:
            spikes[nid] += 1
    for n in outputs:
        print(f"{n.label}: {spikes[n.id]} spikes, v={n.activation:.2f}")

    print("\n=== Stats ===")
    for key, value in network_stats(net).items():
        print(f"  {key}: {value}")

    print("\n=== Checkpoint / Restore ===")
    with tempfile.TemporaryDirectory() as tmp:
        path = net.checkpoint(os.path.join(tmp, "demo.msgpack"))
        restored = Network()
        restored.restore(path)
        net.run(50)
        restored.run(50)
        same = restored.to_dict() == net.to_dict()
        print(f"Restored from {path.name}; continues identically: {same}")

    print("\nDone!")


if __name__ == "__main__":
    main()

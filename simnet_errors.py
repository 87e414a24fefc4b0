"""
simnet error taxonomy.

Lookup failures subclass ``KeyError`` and bad values subclass ``ValueError``
so callers that already catch the builtin types keep working.

    SimnetError
    ├── UnknownRuleError        (ValueError)  unknown rule/responder name
    ├── StaleReferenceError     (KeyError)    object not registered in network
    ├── InvalidParameterError   (ValueError)  zero time constant, bad bounds...
    ├── StepInProgressError     (RuntimeError) structural edit during step()
    └── InvariantViolationError (RuntimeError) corrupted fan-in/fan-out
"""

from __future__ import annotations


class SimnetError(Exception):
    """Base class for all simnet errors."""


class UnknownRuleError(SimnetError, ValueError):
    """A rule, responder, or learning-rule name is not in the registry."""

    def __init__(self, kind: str, name: str, known=()):
        self.kind = kind
        self.name = name
        self.known = tuple(known)
        msg = f"Unknown {kind} '{name}'"
        if self.known:
            msg += f" (known: {', '.join(sorted(self.known))})"
        super().__init__(msg)


class StaleReferenceError(SimnetError, KeyError):
    """A neuron, synapse, or group is not registered in this network."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable.
        return str(self.args[0]) if self.args else ""


class InvalidParameterError(SimnetError, ValueError):
    """A numeric parameter is outside its defined domain."""


class StepInProgressError(SimnetError, RuntimeError):
    """A structural mutation or nested step was attempted mid-step."""


class InvariantViolationError(SimnetError, RuntimeError):
    """Network bookkeeping is inconsistent."""

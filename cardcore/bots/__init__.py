"""
Bots module - Automated answers to pending inputs.

Provides:
- InputPolicy: Interface for answering REQUEST_INPUT
- FirstOptionPolicy, RandomPolicy: Baseline automated seats
- ScriptedPolicy: Replays a recorded input sequence
"""

from .policy import (
    InputPolicy,
    InputDecision,
    FirstOptionPolicy,
    RandomPolicy,
    ScriptedPolicy,
    make_policy,
)

__all__ = [
    "InputPolicy",
    "InputDecision",
    "FirstOptionPolicy",
    "RandomPolicy",
    "ScriptedPolicy",
    "make_policy",
]

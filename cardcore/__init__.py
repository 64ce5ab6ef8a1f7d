"""
cardcore - Declarative card game rules runtime

A deterministic engine that plays card games from a declarative game
definition (components, setup, flow, rules). It provides:
- A State Model of cards, zones, players and variables
- Selector resolution and expression evaluation over that state
- An action executor with failure policies and pending inputs
- Trigger-condition-effect rule dispatch and a flow controller
- Sessions with snapshots, replayable traces and automated input policies
"""

__version__ = "0.1.0"

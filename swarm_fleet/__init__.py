"""
Swarm Fleet - safety net for a fleet of autonomous coding agents.

Keeps each agent on its own branch, detects and remediates conflicts with
the integration branch, and watches fleet health and spend so new work
stops being admitted when the budget runs out.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]

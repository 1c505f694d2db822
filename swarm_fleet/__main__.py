"""
Entry point for running swarm_fleet as a module.

Allows running as: python -m swarm_fleet
"""

from swarm_fleet.cli import cli_main

if __name__ == "__main__":
    cli_main()

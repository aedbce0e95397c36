"""
Entry point for running safetygate as a module.

Usage:
    python -m safetygate serve
    python -m safetygate discover "Add a login form"

This is equivalent to:
    python -m safetygate.cli.gate_cli [args]
"""

from safetygate.cli.gate_cli import main


if __name__ == "__main__":
    main()

"""
SpecGate CLI package.
"""

from specgate.cli.main import cli, main

__all__ = ["cli", "main"]

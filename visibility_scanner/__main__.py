"""
Entry point for running the visibility scanner as a module.

Enables execution via:
    python -m visibility_scanner [command] [options]

This is equivalent to running the installed CLI:
    visibility-scanner [command] [options]
"""

from visibility_scanner.cli import app

if __name__ == "__main__":
    app()

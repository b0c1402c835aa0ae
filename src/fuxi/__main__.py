"""Main entry point for running fuxi as a module.

Usage:
    python -m fuxi --help
    python -m fuxi run --task "add tests" -n 3
    python -m fuxi daily --run-e2e
"""

from __future__ import annotations

from .cli import main

if __name__ == "__main__":
    main()

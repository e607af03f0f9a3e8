"""CLI entry point for visionlight.cli module.

Enables execution via: python -m visionlight.cli
"""

from visionlight.cli.sweep_jobs import main

if __name__ == "__main__":
    main()

"""Entry point for running capflow as a module.

Usage:
    python -m capflow
"""

from capflow.cli.app import app


def main() -> None:
    """Main entry point for the capflow CLI."""
    app()


if __name__ == "__main__":
    main()

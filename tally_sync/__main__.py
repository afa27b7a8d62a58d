"""
Main entry point for running tally_sync as a module.

Usage:
    python -m tally_sync [options]
"""
import sys
from .cli import main

if __name__ == "__main__":
    sys.exit(main())

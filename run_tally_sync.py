#!/usr/bin/env python3
"""
Convenience script to run Tally sync operations.

Usage:
    # Test connection
    python run_tally_sync.py --test-connection

    # Retry failed syncs
    python run_tally_sync.py --retry-failed

    # Initialize the sync tables
    python run_tally_sync.py --init-db

See ``python run_tally_sync.py --help`` for all options.
"""
import sys
from tally_sync.cli import main

if __name__ == "__main__":
    sys.exit(main())

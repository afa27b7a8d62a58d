"""
Tally Sync - push back office transactions into Tally accounting.

Turns finalized sales bills, purchase vouchers, cash entries,
payments/receipts and sales returns into Tally vouchers, delivers them over
the Tally XML HTTP interface and records every attempt in a per-transaction
sync log that a retry sweep replays.

Usage:
    # Test connection
    python -m tally_sync --test-connection

    # Retry failed syncs
    python -m tally_sync --retry-failed

    # Show recent sync log entries
    python -m tally_sync --logs --status failed
"""

__version__ = "1.0.0"

from .config import AppSettings, ConfigurationError, load_settings
from .sync import TallySyncService

__all__ = ["AppSettings", "ConfigurationError", "load_settings", "TallySyncService", "__version__"]

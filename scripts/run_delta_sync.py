#!/usr/bin/env python3
"""
Cron job script: delta sync of the KicksDB feed into WooCommerce.
Add to crontab: 30 2 * * * cd /path/to/app && /path/to/venv/bin/python scripts/run_delta_sync.py

Flags: --dry-run, --check-only, --force-full, --feed=FILE, --limit=N, --verbose
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from feedsync.cli import delta_main


if __name__ == "__main__":
    sys.exit(delta_main())

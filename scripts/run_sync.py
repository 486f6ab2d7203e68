#!/usr/bin/env python3
"""
Cron job script: registry sync + price reconcile for every tracked SKU.
Add to crontab: 0 */6 * * * cd /path/to/app && /path/to/venv/bin/python scripts/run_sync.py

This runs as a standalone script, not through the web server. Accepts the
same flags as feedsync-reconcile (--dry-run, --verbose, --sku=, --limit=,
--skip-registry).
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from feedsync.cli import reconcile_main


if __name__ == "__main__":
    sys.exit(reconcile_main())

"""
feedsync: keeps a WooCommerce catalog in step with the KicksDB market feed.
"""

import logging

# Library default: silent unless the application configures logging
logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "1.0.0"

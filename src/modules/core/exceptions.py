"""Cross-module infrastructure exceptions.

Business-rule failures live in each module's ``exceptions.py``.  This
module holds failures of the layers underneath (database, network) that
the core never retries on its own.
"""

from __future__ import annotations


class InfrastructureError(Exception):
    """A persistence or network dependency failed.

    The transport layer maps this to 503 and leaves retrying to the client,
    so a financial operation is never silently repeated.
    """

from __future__ import annotations


class QueueShutdown(Exception):
    """Raised by ``get`` once the queue has been shut down."""

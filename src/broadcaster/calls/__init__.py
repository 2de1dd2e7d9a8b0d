"""
Call lifecycle: records, stores, the webhook state machine and batch dispatch.

NOTE:
This package __init__ MUST be lightweight.
Do NOT import the ORM models here; importing any submodule would map the
document tables at import time.
"""

__all__: list[str] = []

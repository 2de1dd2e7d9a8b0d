"""
Call broadcast orchestrator.
"""

__version__ = "0.1.0"

"""
Ratchet - persistent migration-state store.

Tracks which schema migrations have been applied to a relational database,
verifies their content against stored checksums, and resumes partially
applied multi-statement migrations from a checkpoint log.
"""

__version__ = "1.0.0"

from ratchet.core import *  # noqa

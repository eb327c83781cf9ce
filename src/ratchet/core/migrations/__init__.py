"""Checkpointed migration runner for ratchet.

Applies caller-supplied migrations through a migration store, one statement
at a time, recording a checkpoint after each statement so an interrupted
run resumes where it stopped.

Modules
-------
runner    MigrationRunner with prepare() / verify() / apply() / amend()
"""

from ratchet.core.migrations.runner import (
    MigrationFile,
    MigrationRunner,
    RunResult,
    split_statements,
)

__all__ = ["MigrationFile", "MigrationRunner", "RunResult", "split_statements"]

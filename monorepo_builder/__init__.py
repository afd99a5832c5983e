"""
monorepo_builder package

Provides the CLI entrypoint (`python -m monorepo_builder`) and the pipeline
that folds several repositories, with their history, into one monorepo.
"""

from .cli import main

__all__ = ["main"]

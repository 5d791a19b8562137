"""CLI package exports for top-level command entry points."""

from __future__ import annotations

from .main import EphVMModalCLI, main

__all__ = ['EphVMModalCLI', 'main']

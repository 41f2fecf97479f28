"""
Core business logic package for Digital Detox.

Contains the headless DetoxEngine (tracking loop, block decision, sync
loops) and the command/query message dispatcher. Zero browser dependencies.
"""

from core.engine import DetoxEngine

__all__ = ["DetoxEngine"]

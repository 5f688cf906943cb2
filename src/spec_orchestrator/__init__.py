"""Spec-driven task orchestration with bounded self-correction."""

__version__ = "0.1.0"

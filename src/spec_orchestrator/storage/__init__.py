"""Durable file storage primitives."""

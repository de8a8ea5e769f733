"""Workflow serialization."""

from app.serializer.serializer import SerializationError, Serializer

__all__ = ["Serializer", "SerializationError"]

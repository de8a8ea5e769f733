"""Block type definitions."""

from app.blocks.registry import BlockDefinition, get_block, list_block_types

__all__ = ["BlockDefinition", "get_block", "list_block_types"]

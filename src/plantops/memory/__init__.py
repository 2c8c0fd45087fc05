"""Conversation memory."""

from plantops.memory.manager import MemoryManager

__all__ = ["MemoryManager"]

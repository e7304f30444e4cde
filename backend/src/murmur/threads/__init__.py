"""Reply-tree assembly and the incremental thread store."""

from .assembler import ThreadForest, ThreadNode, assemble_threads, message_sort_key
from .store import ThreadStore

__all__ = [
    "ThreadForest",
    "ThreadNode",
    "ThreadStore",
    "assemble_threads",
    "message_sort_key",
]

"""Message threading and live delivery core for chat channel views."""

from .reactions import ReactionLedger
from .realtime import LiveUpdateMerger, LocalPushSource, PushSource
from .threads import ThreadForest, ThreadNode, ThreadStore, assemble_threads

__all__ = [
    "LiveUpdateMerger",
    "LocalPushSource",
    "PushSource",
    "ReactionLedger",
    "ThreadForest",
    "ThreadNode",
    "ThreadStore",
    "assemble_threads",
]

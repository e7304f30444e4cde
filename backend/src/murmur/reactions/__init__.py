from .ledger import ReactionLedger

__all__ = ["ReactionLedger"]

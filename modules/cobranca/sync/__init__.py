from modules.cobranca.sync.board import ChargeBoard, is_overdue
from modules.cobranca.sync.realtime import ChargeChange, RealtimeFeed
from modules.cobranca.sync.reconciler import Reconciler, watch_cobrancas

__all__ = [
    "ChargeBoard",
    "ChargeChange",
    "RealtimeFeed",
    "Reconciler",
    "is_overdue",
    "watch_cobrancas",
]

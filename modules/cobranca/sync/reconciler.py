# reconciler.py
# Único escritor do ChargeBoard: consome a fila de mudanças num laço dedicado.

from __future__ import annotations
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator, Optional
import asyncio
import logging

from modules.cobranca.sync.board import ChargeBoard
from modules.cobranca.sync.realtime import ChargeChange, RealtimeFeed

logger = logging.getLogger("cobrancas.reconciler")


class Reconciler:
    def __init__(self, board: ChargeBoard, queue: Optional["asyncio.Queue[ChargeChange]"] = None):
        self.board = board
        self.queue: "asyncio.Queue[ChargeChange]" = queue if queue is not None else asyncio.Queue()
        self.applied = 0

    def apply(self, change: ChargeChange) -> bool:
        if change.type == "UPDATE":
            changed = self.board.merge(change.record)
        elif change.type == "DELETE":
            changed = self.board.remove(change.row_id)
        else:
            # INSERT chega sem o join de clientes; a lista é recarregada pela tela
            changed = False
        if changed:
            self.applied += 1
        logger.debug("change_applied type=%s id=%s changed=%s", change.type, change.row_id, changed)
        return changed

    async def _run(self) -> None:
        while True:
            change = await self.queue.get()
            try:
                self.apply(change)
            finally:
                self.queue.task_done()

    @asynccontextmanager
    async def running(self) -> AsyncIterator["Reconciler"]:
        """Roda o laço enquanto o contexto estiver aberto; sempre cancela na saída."""
        task = asyncio.create_task(self._run())
        try:
            yield self
        finally:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task


@asynccontextmanager
async def watch_cobrancas(
    realtime_url: str,
    access_token: str,
    board: ChargeBoard,
    **feed_options,
) -> AsyncIterator[Reconciler]:
    """Liga o canal realtime ao board; a assinatura é desfeita ao sair, com ou sem erro."""
    reconciler = Reconciler(board)
    async with reconciler.running():
        async with RealtimeFeed(realtime_url, access_token, reconciler.queue, **feed_options):
            yield reconciler

# realtime.py
# Assinatura do canal realtime do Supabase (protocolo Phoenix sobre websocket).
# Cada mudança de linha em `cobrancas` vira um ChargeChange colocado numa asyncio.Queue.

from __future__ import annotations
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence
import asyncio
import itertools
import json
import logging
import websockets
from websockets.exceptions import ConnectionClosed

logger = logging.getLogger("cobrancas.realtime")

HEARTBEAT_INTERVAL = 25.0


@dataclass(frozen=True)
class ChargeChange:
    type: str  # INSERT | UPDATE | DELETE
    record: Dict[str, Any] = field(default_factory=dict)
    old_record: Dict[str, Any] = field(default_factory=dict)

    @property
    def row_id(self) -> Optional[str]:
        return self.record.get("id") or self.old_record.get("id")


def parse_change(message: Dict[str, Any]) -> Optional[ChargeChange]:
    """Extrai o ChargeChange de uma mensagem `postgres_changes`; outras mensagens dão None."""
    if message.get("event") != "postgres_changes":
        return None
    data = (message.get("payload") or {}).get("data") or {}
    change_type = data.get("type") or data.get("eventType")
    if not change_type:
        return None
    return ChargeChange(
        type=str(change_type).upper(),
        record=data.get("record") or {},
        old_record=data.get("old_record") or {},
    )


class RealtimeFeed:
    """Abre o websocket, entra no canal e alimenta `queue` até o contexto ser encerrado.

    Sem replay: mudanças ocorridas com a conexão caída são perdidas.
    """

    def __init__(
        self,
        url: str,
        access_token: str,
        queue: "asyncio.Queue[ChargeChange]",
        table: str = "cobrancas",
        events: Sequence[str] = ("UPDATE", "DELETE"),
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.url = url
        self.access_token = access_token
        self.queue = queue
        self.table = table
        self.topic = f"realtime:{table}"
        self.events = tuple(events)
        self.heartbeat_interval = heartbeat_interval
        self._connect = connect
        self._refs = itertools.count(1)
        self._ws = None
        self._tasks: list = []

    async def _send(self, topic: str, event: str, payload: Dict[str, Any], join_ref: Optional[str] = None) -> None:
        message = {"topic": topic, "event": event, "payload": payload, "ref": str(next(self._refs))}
        if join_ref:
            message["join_ref"] = join_ref
        await self._ws.send(json.dumps(message))

    async def _join(self) -> None:
        changes = [{"event": e, "schema": "public", "table": self.table} for e in self.events]
        await self._send(
            self.topic,
            "phx_join",
            {
                "config": {
                    "broadcast": {"self": False},
                    "presence": {"key": ""},
                    "postgres_changes": changes,
                },
                "access_token": self.access_token,
            },
            join_ref="1",
        )

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self._send("phoenix", "heartbeat", {})
            except ConnectionClosed:
                return

    async def _read(self) -> None:
        try:
            await self._consume()
        except ConnectionClosed as exc:
            logger.warning("realtime_connection_lost topic=%s code=%s", self.topic, getattr(exc, "code", None))
        except Exception:
            logger.exception("realtime_reader_failed topic=%s", self.topic)

    async def _consume(self) -> None:
        async for raw in self._ws:
            try:
                message = json.loads(raw)
            except (TypeError, ValueError):
                logger.warning("realtime_bad_frame")
                continue
            if not isinstance(message, dict):
                logger.warning("realtime_bad_frame type=%s", type(message).__name__)
                continue
            event = message.get("event")
            if event == "phx_error" or (
                event == "phx_reply" and (message.get("payload") or {}).get("status") == "error"
            ):
                logger.error("realtime_channel_error topic=%s payload=%s", message.get("topic"), message.get("payload"))
                continue
            change = parse_change(message)
            if change is not None:
                await self.queue.put(change)
        logger.info("realtime_closed topic=%s", self.topic)

    async def __aenter__(self) -> "RealtimeFeed":
        self._ws = await self._connect(self.url)
        try:
            await self._join()
        except BaseException:
            await self._ws.close()
            raise
        self._tasks = [
            asyncio.create_task(self._read()),
            asyncio.create_task(self._heartbeat()),
        ]
        logger.info("realtime_subscribed topic=%s events=%s", self.topic, ",".join(self.events))
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        for task in self._tasks:
            task.cancel()
        try:
            for task in self._tasks:
                with suppress(asyncio.CancelledError):
                    await task
        finally:
            self._tasks = []
            if self._ws is not None:
                await self._ws.close()
                self._ws = None
        logger.info("realtime_unsubscribed topic=%s", self.topic)

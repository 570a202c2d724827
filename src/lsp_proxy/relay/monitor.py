"""
Monitoring opt-in du trafic JSON-RPC relayé.

Important:
- Ne jamais écrire sur stdout.
- Logger uniquement de la metadata (pas de params/result).
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles

from ..config.settings import MonitorConfig
from ..protocol.codec import Message, MessageKind, classify

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrafficEvent:
    ts: str
    direction: str
    kind: str
    method: Optional[str]
    req_id: Any

    def to_json_line(self) -> str:
        payload: Dict[str, Any] = {
            "ts": self.ts,
            "direction": self.direction,
            "kind": self.kind,
        }
        if self.method is not None:
            payload["method"] = self.method
        if self.req_id is not None:
            payload["id"] = self.req_id
        return json.dumps(payload, ensure_ascii=False)


def _now_utc_iso() -> str:
    # ISO 8601 UTC, précision ms, suffixe 'Z'
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TrafficMonitor:
    """
    Compte les requêtes par méthode et par direction, et écrit un journal
    JSONL via une file bornée (les événements en trop sont perdus, jamais
    bloquants pour le relais).
    """

    def __init__(self, config: MonitorConfig):
        self._enabled = config.enabled
        self._log_path = Path(config.log_path).expanduser() if config.enabled and config.log_path else None
        self._queue_max = max(1, config.queue_max)
        self._summary_on_exit = config.summary_on_exit if config.enabled else False

        self._queue: Optional[asyncio.Queue] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._closing = False

        self.requests_by_method: Dict[str, Dict[str, int]] = {
            "client_to_server": {},
            "server_to_client": {},
        }
        self.notifications_total = 0
        self.responses_total = 0
        self.responses_error_total = 0

        self.log_dropped_total = 0
        self.log_write_errors_total = 0
        self.log_write_disabled = False
        self.log_last_error: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def start(self) -> None:
        if not self._enabled or self._log_path is None or self._queue is not None:
            return
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._queue = asyncio.Queue(maxsize=self._queue_max)
        self._writer_task = asyncio.create_task(self._writer_loop())

    def observe(self, *, direction: str, message: Message) -> None:
        if not self._enabled or self._closing:
            return

        kind = classify(message)
        if kind is MessageKind.INVALID:
            return
        method = message.get("method") if kind is not MessageKind.RESPONSE else None

        if kind is MessageKind.REQUEST:
            counters = self.requests_by_method.setdefault(direction, {})
            counters[method] = counters.get(method, 0) + 1
        elif kind is MessageKind.NOTIFICATION:
            self.notifications_total += 1
        else:
            self.responses_total += 1
            if "error" in message:
                self.responses_error_total += 1

        self._enqueue(
            TrafficEvent(
                ts=_now_utc_iso(),
                direction=direction,
                kind=kind.value,
                method=method,
                req_id=message.get("id"),
            )
        )

    async def stop(self) -> None:
        if not self._enabled:
            return
        self._closing = True

        queue = self._queue
        writer_task = self._writer_task
        if queue is not None and writer_task is not None:
            try:
                await asyncio.wait_for(queue.join(), timeout=1.0)
            except asyncio.TimeoutError:
                pass
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                pass
            try:
                await asyncio.wait_for(writer_task, timeout=1.0)
            except asyncio.TimeoutError:
                writer_task.cancel()
                try:
                    await writer_task
                except asyncio.CancelledError:
                    pass

        if self._summary_on_exit:
            sys.stderr.write(json.dumps(self.get_summary(), ensure_ascii=False) + "\n")
            sys.stderr.flush()

    def get_summary(self) -> Dict[str, Any]:
        return {
            "enabled": self._enabled,
            "log_path": str(self._log_path) if self._log_path is not None else None,
            "requests_by_method": {k: dict(v) for k, v in self.requests_by_method.items()},
            "notifications_total": self.notifications_total,
            "responses_total": self.responses_total,
            "responses_error_total": self.responses_error_total,
            "log_dropped_total": self.log_dropped_total,
            "log_write_errors_total": self.log_write_errors_total,
            "log_write_disabled": self.log_write_disabled,
            "log_last_error": self.log_last_error,
        }

    def _enqueue(self, event: TrafficEvent) -> None:
        if self._queue is None or self.log_write_disabled:
            return
        try:
            self._queue.put_nowait(event.to_json_line())
        except asyncio.QueueFull:
            self.log_dropped_total += 1

    async def _writer_loop(self) -> None:
        assert self._queue is not None
        assert self._log_path is not None

        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                if self.log_write_disabled:
                    continue
                try:
                    async with aiofiles.open(self._log_path, "a", encoding="utf-8") as f:
                        await f.write(item + "\n")
                except OSError as e:
                    self.log_write_errors_total += 1
                    self.log_write_disabled = True
                    self.log_last_error = str(e)
                    logger.warning(f"⚠️ Journal de trafic désactivé: {e}")
            finally:
                self._queue.task_done()

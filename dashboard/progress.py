"""
Canal de progression (Server-Sent Events) d'un export ZIP

Une souscription = un flux GET long, lu dans sa propre tâche asyncio.
- on_message(dict) pour chaque événement `data:` décodable en objet JSON
- on_error(exc) si le flux échoue (jamais après close())
- close() idempotent, annule la lecture
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

logger = logging.getLogger("dashboard.progress")


class ProgressChannelError(Exception):
    pass


class ProgressSubscription:

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        on_message: Callable[[Dict[str, Any]], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self.client = client
        self.url = url
        self.on_message = on_message
        self.on_error = on_error
        self._task: Optional[asyncio.Task] = None
        self._connected = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self, connect_timeout: float) -> "ProgressSubscription":
        """Démarre la lecture et attend l'établissement du flux (borné)"""
        self._task = asyncio.create_task(self._run())
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=connect_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[PROGRESS] canal non établi après {connect_timeout}s: {self.url}")
        return self

    def close(self):
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _dispatch(self, data_lines: List[str]):
        if self._closed or not data_lines:
            return
        try:
            message = json.loads("\n".join(data_lines))
        except ValueError:
            logger.debug(f"[PROGRESS] message ignoré: {data_lines!r}")
            return
        if isinstance(message, dict):
            self.on_message(message)

    async def _run(self):
        try:
            async with self.client.stream(
                "GET", self.url, headers={"Accept": "text/event-stream"}, timeout=None
            ) as response:
                if not response.is_success:
                    raise ProgressChannelError(f"HTTP {response.status_code}")
                self._connected.set()

                data_lines: List[str] = []
                async for line in response.aiter_lines():
                    if self._closed:
                        break
                    if not line:
                        self._dispatch(data_lines)
                        data_lines = []
                        continue
                    if line.startswith(":"):
                        continue
                    name, _, value = line.partition(":")
                    if name == "data":
                        data_lines.append(value[1:] if value.startswith(" ") else value)
        except (httpx.HTTPError, ProgressChannelError) as e:
            if not self._closed and self.on_error is not None:
                self.on_error(e)
        finally:
            self._connected.set()

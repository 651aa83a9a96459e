"""aio-pika adapter used by the publisher driver.

The driver only talks to the four calls below, so tests can swap in any
object with the same shape.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractExchange


class PublisherError(Exception):
    """Base class for failures of a publishing run."""


class BrokerConnectionError(PublisherError, ConnectionError):
    """The connection or its channel could not be established."""


class PublishError(PublisherError):
    """A single publish call failed."""

    def __init__(self, exchange: str, message: str):
        super().__init__(f"publish to '{exchange}' failed: {message}")
        self.exchange = exchange


class AioPikaBroker:
    def __init__(self) -> None:
        # exchange handles per channel, built without a declare round-trip
        self._exchanges: Dict[int, Dict[str, AbstractExchange]] = {}

    async def connect(self, url: str, timeout: float) -> AbstractConnection:
        try:
            return await asyncio.wait_for(aio_pika.connect(url), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise BrokerConnectionError(f"timed out after {timeout}s connecting to broker") from exc
        except Exception as exc:
            raise BrokerConnectionError(f"cannot connect to broker: {exc}") from exc

    async def open_channel(self, connection: AbstractConnection) -> AbstractChannel:
        try:
            channel = await connection.channel()
        except Exception as exc:
            raise BrokerConnectionError(f"cannot open channel: {exc}") from exc
        self._exchanges[id(channel)] = {}
        return channel

    async def _exchange(self, channel: AbstractChannel, name: str) -> AbstractExchange:
        if name == "":
            return channel.default_exchange
        cache = self._exchanges.setdefault(id(channel), {})
        exchange = cache.get(name)
        if exchange is None:
            exchange = await channel.get_exchange(name, ensure=False)
            cache[name] = exchange
        return exchange

    async def publish(
        self,
        channel: AbstractChannel,
        exchange: str,
        routing_key: str,
        content_type: str,
        body: bytes,
    ) -> None:
        try:
            target = await self._exchange(channel, exchange)
            await target.publish(
                aio_pika.Message(body=body, content_type=content_type),
                routing_key=routing_key,
            )
        except Exception as exc:
            raise PublishError(exchange, str(exc) or type(exc).__name__) from exc

    async def close(self, resource: Optional[Any]) -> None:
        if resource is None or resource.is_closed:
            return
        self._exchanges.pop(id(resource), None)
        await resource.close()

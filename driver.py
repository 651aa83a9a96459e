from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from broker import AioPikaBroker, PublishError
from counter import RemainingCounter
from payload import encode_payload, generate_payload
from schemas import PublisherConfig

logger = logging.getLogger(__name__)

ProgressFn = Callable[[int], None]


class DriverState(str, Enum):
    NOT_STARTED = "not_started"
    CONNECTING = "connecting"
    PUBLISHING = "publishing"
    CLOSING = "closing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunResult:
    published: int
    remaining: int
    cancelled: bool
    elapsed: float


class PublisherDriver:
    """Publishes ``total_messages`` synthetic JSON bodies round-robin across exchanges.

    One connection and one channel are held for the whole run and always
    released on the way out. With ``concurrency == 1`` publishes are issued
    strictly one after another in exchange order. A larger value runs that many
    workers over the same counter; message ``n`` still goes to
    ``exchanges[n % len(exchanges)]`` but initiation order is no longer fixed.
    """

    def __init__(
        self,
        config: PublisherConfig,
        broker: Optional[Any] = None,
        rng: Any = random,
        on_progress: Optional[ProgressFn] = None,
    ):
        self.config = config
        self.exchanges: Tuple[str, ...] = tuple(config.exchanges)
        self.broker = broker if broker is not None else AioPikaBroker()
        self.rng = rng
        self.on_progress = on_progress

        self.state = DriverState.NOT_STARTED
        self.counter = RemainingCounter(config.total_messages)
        self.published = 0

    @property
    def remaining(self) -> int:
        return self.counter.remaining

    async def run(self, cancel: Optional[asyncio.Event] = None) -> RunResult:
        if self.state is not DriverState.NOT_STARTED:
            raise RuntimeError(f"driver already ran (state={self.state.value})")
        if cancel is None:
            cancel = asyncio.Event()

        started = time.monotonic()
        connection = channel = None
        self.state = DriverState.CONNECTING
        try:
            connection = await self.broker.connect(self.config.url, self.config.connect_timeout)
            channel = await self.broker.open_channel(connection)

            self.state = DriverState.PUBLISHING
            if self.config.concurrency == 1:
                await self._worker(channel, cancel)
            else:
                await self._run_pool(channel, cancel)
            self._observe(self.counter.remaining)
        except BaseException:
            self.state = DriverState.FAILED
            raise
        finally:
            if self.state is not DriverState.FAILED:
                self.state = DriverState.CLOSING
            await self._release(channel, connection)

        self.state = DriverState.DONE
        return RunResult(
            published=self.published,
            remaining=self.counter.remaining,
            cancelled=cancel.is_set() and not self.counter.exhausted(),
            elapsed=time.monotonic() - started,
        )

    async def _run_pool(self, channel: Any, cancel: asyncio.Event) -> None:
        tasks: List[asyncio.Task] = [
            asyncio.create_task(self._worker(channel, cancel))
            for _ in range(self.config.concurrency)
        ]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()

    async def _worker(self, channel: Any, cancel: asyncio.Event) -> None:
        while not cancel.is_set():
            seq = await self.counter.claim()
            if seq is None:
                return
            # count as it stood before this claim
            before = self.counter.total - seq
            if before % self.config.progress_every == 0:
                self._observe(before)
            exchange = self.exchanges[seq % len(self.exchanges)]
            body = encode_payload(generate_payload(self.rng))
            await self._publish(channel, exchange, body)
            self.published += 1

    async def _publish(self, channel: Any, exchange: str, body: bytes) -> None:
        attempt = 0
        while True:
            try:
                await self.broker.publish(
                    channel,
                    exchange,
                    self.config.routing_key,
                    self.config.content_type,
                    body,
                )
                return
            except PublishError as exc:
                attempt += 1
                if attempt > self.config.retries:
                    logger.error("%s", exc)
                    raise
                logger.warning("%s; retry %d/%d", exc, attempt, self.config.retries)
                await asyncio.sleep(self.config.retry_backoff * attempt)

    def _observe(self, remaining: int) -> None:
        logger.info("to publish %d", remaining)
        if self.on_progress is not None:
            self.on_progress(remaining)

    async def _release(self, channel: Any, connection: Any) -> None:
        for name, resource in (("channel", channel), ("connection", connection)):
            if resource is None:
                continue
            try:
                await self.broker.close(resource)
            except Exception as exc:
                logger.warning("closing %s failed: %s", name, exc)

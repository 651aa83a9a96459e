#!/usr/bin/env python3
"""Publish a fixed number of synthetic JSON messages round-robin across AMQP exchanges."""
from __future__ import annotations

import argparse
import asyncio
import logging
import random
import signal
import sys
from typing import List, Optional

from pydantic import ValidationError

import config
from broker import PublisherError
from driver import PublisherDriver, RunResult
from schemas import PublisherConfig

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_CANCELLED = 130


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Publish synthetic JSON messages to AMQP exchanges")
    parser.add_argument(
        "exchanges",
        nargs="?",
        default=None,
        help="Comma-separated exchange names (default: %s)" % ",".join(config.DEFAULT_EXCHANGES),
    )
    parser.add_argument(
        "--broker",
        default=config.AMQP_URL,
        help="AMQP URL of the broker (default: %(default)s)",
    )
    parser.add_argument(
        "--count",
        type=int,
        default=config.TOTAL_MESSAGES,
        help="Total messages to publish (default: %(default)s)",
    )
    parser.add_argument(
        "--routing-key",
        default=config.ROUTING_KEY,
        help="Routing key for every message (default: %(default)s)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=config.CONCURRENCY,
        help="Publishes in flight at once (default: %(default)s)",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=config.PUBLISH_RETRIES,
        help="Retries per failed publish before giving up (default: %(default)s)",
    )
    parser.add_argument(
        "--progress-every",
        type=int,
        default=config.PROGRESS_EVERY,
        help="Log progress each time this many messages remain (default: %(default)s)",
    )
    parser.add_argument(
        "--connect-timeout",
        type=float,
        default=config.CONNECT_TIMEOUT_SEC,
        help="Seconds to wait for the broker connection (default: %(default)s)",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for payload generation")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> PublisherConfig:
    exchanges = (
        config.split_exchanges(args.exchanges)
        if args.exchanges is not None
        else list(config.DEFAULT_EXCHANGES)
    )
    return PublisherConfig(
        url=args.broker,
        exchanges=exchanges,
        total_messages=args.count,
        routing_key=args.routing_key,
        progress_every=args.progress_every,
        concurrency=args.concurrency,
        retries=args.retries,
        connect_timeout=args.connect_timeout,
    )


async def run_driver(driver: PublisherDriver) -> RunResult:
    """Run the driver until it finishes or is interrupted.

    The first SIGINT/SIGTERM stops new publishes and lets in-flight ones
    finish. A second one cancels the run outright, so a publish stuck on a
    blocked connection cannot hold the process open; teardown still runs.
    """
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    started = loop.time()
    run_task = asyncio.create_task(driver.run(cancel))
    forced = False

    def on_signal() -> None:
        nonlocal forced
        if cancel.is_set():
            forced = True
            run_task.cancel()
        else:
            logger.warning("interrupted, finishing in-flight publishes (signal again to abort)")
            cancel.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal)
        except (NotImplementedError, RuntimeError):
            # no signal handlers outside the main thread or on Windows
            pass
    try:
        return await run_task
    except asyncio.CancelledError:
        if not forced:
            raise
        logger.warning("run aborted with %d messages left", driver.remaining)
        return RunResult(
            published=driver.published,
            remaining=driver.remaining,
            cancelled=True,
            elapsed=loop.time() - started,
        )
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass


def error_exit(msg: str, code: int = EXIT_FAILED) -> None:
    print(f"Error: {msg}", file=sys.stderr)
    sys.exit(code)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
        stream=sys.stderr,
    )
    # aiormq frame logging is far too chatty at debug level
    logging.getLogger("aiormq").setLevel(logging.WARNING)

    try:
        cfg = build_config(args)
    except ValidationError as exc:
        error_exit(f"invalid configuration: {exc}", EXIT_INVALID)
        return

    rng = random.Random(args.seed) if args.seed is not None else random
    driver = PublisherDriver(cfg, rng=rng)
    logger.info("publishing %d messages to %s", cfg.total_messages, cfg.exchanges)

    try:
        result = asyncio.run(run_driver(driver))
    except PublisherError as exc:
        error_exit(str(exc))
        return

    logger.info(
        "published=%d remaining=%d elapsed_sec=%.2f",
        result.published,
        result.remaining,
        result.elapsed,
    )
    if result.cancelled:
        print("Interrupted", file=sys.stderr)
        sys.exit(EXIT_CANCELLED)
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Relay Worker Startup Script
Run one relay service: `python run_relay.py welcome` or `python run_relay.py notification`
"""
import argparse
import asyncio
import logging
import sys
from functools import partial

from core.config import settings
from core.events.errors import BrokerConnectionError, StoreConnectionError
from core.events.runtime import RelayWorker
from core.logging_config import setup_logging
from services.notification import NotificationDispatchRelay
from services.welcome import WelcomeRelay

logger = logging.getLogger(__name__)

RELAYS = {
    WelcomeRelay.name: WelcomeRelay,
    NotificationDispatchRelay.name: NotificationDispatchRelay,
}


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an event relay worker")
    parser.add_argument("relay", choices=sorted(RELAYS), help="Relay service to run")
    parser.add_argument("--group-id", help="Consumer group (default: <relay>-service-group)")
    parser.add_argument("--consume-topic", help="Override the consumed topic")
    parser.add_argument("--produce-topic", help="Override the produced topic")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Logging level")
    return parser.parse_args(argv)


def build_worker(args: argparse.Namespace) -> RelayWorker:
    relay_factory = partial(
        RELAYS[args.relay],
        consume_topic=args.consume_topic,
        produce_topic=args.produce_topic,
    )
    return RelayWorker(relay_factory, group_id=args.group_id)


def main(argv=None):
    """Start the relay worker"""
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger.info(f"Starting {args.relay} relay worker...")
    worker = build_worker(args)
    try:
        asyncio.run(worker.serve())
    except (BrokerConnectionError, StoreConnectionError) as e:
        logger.critical(f"Failed to start {args.relay} relay: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

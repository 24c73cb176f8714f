#!/usr/bin/env python3
"""
Command-line entry point for gitbroker.

Usage:
    # Publish one message
    gitbroker produce --remote https://example.org/broker.git --topic PINGPONG \
        --node PING-NODE --event PING --body '{"n": 1}'

    # Poll a topic three times, one second apart, acknowledging what arrives
    gitbroker consume --remote https://example.org/broker.git --topic PINGPONG \
        --node PONG-NODE --polls 3 --interval 1 --ack

Values missing on the command line come from the configuration file and
GITBROKER_* environment variables.
"""

import argparse
import json
import signal
import sys
import time
from typing import List, Optional

from gitbroker.backend.base import Credentials
from gitbroker.consumer import Consumer, ConsumerConfig
from gitbroker.core.cancel import CancellationToken
from gitbroker.errors import BrokerError
from gitbroker.producer import Producer, ProducerConfig
from gitbroker.utils.config import Config
from gitbroker.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='gitbroker - a message log on top of a shared git repository'
    )

    parser.add_argument('--config', type=str, help='YAML configuration file')
    parser.add_argument('--remote', type=str, help='Repository URI acting as the broker')
    parser.add_argument('--topic', type=str, help='Topic (branch) name')
    parser.add_argument('--node', type=str, help='Identity of this node')
    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: from configuration)'
    )
    parser.add_argument(
        '--log-format',
        type=str,
        choices=['json', 'console'],
        help='Log output format (default: from configuration)'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    produce = subparsers.add_parser('produce', help='Publish one message')
    produce.add_argument('--event', type=str, required=True, help='Event name')
    produce.add_argument('--body', type=str, default='', help='Message body')

    consume = subparsers.add_parser('consume', help='Receive message batches')
    consume.add_argument('--polls', type=int, default=1, help='Number of receive calls (default: 1)')
    consume.add_argument(
        '--interval',
        type=float,
        default=1.0,
        help='Seconds between receive calls (default: 1.0)'
    )
    consume.add_argument('--ack', action='store_true', help='Delete messages after printing them')

    return parser.parse_args(argv)


def _required(value: Optional[str], name: str) -> str:
    if not value:
        raise SystemExit(f"error: --{name} is required (or set it in the configuration)")
    return value


def _credentials(config: Config) -> Optional[Credentials]:
    username = config.get("credentials.username")
    if not username:
        return None
    return Credentials(username, config.get("credentials.password") or "")


def run_produce(args: argparse.Namespace, config: Config) -> int:
    """Publish one message and print its file name."""
    with Producer(
        _required(args.remote or config.get("broker.remote"), "remote"),
        _required(args.topic or config.get("broker.topic"), "topic"),
        _required(args.node or config.get("broker.node"), "node"),
        credentials=_credentials(config),
        config=ProducerConfig.from_config(config),
    ) as producer:
        message = producer.publish(args.event, args.body)

    print(message.file_name)
    return 0


def run_consume(args: argparse.Namespace, config: Config) -> int:
    """Poll the topic and print every delivered message as a JSON line."""
    cancel = CancellationToken()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: cancel.cancel())
    try:
        return _poll(args, config, cancel)
    finally:
        signal.signal(signal.SIGINT, previous_handler)


def _poll(args: argparse.Namespace, config: Config, cancel: CancellationToken) -> int:
    with Consumer(
        _required(args.remote or config.get("broker.remote"), "remote"),
        _required(args.topic or config.get("broker.topic"), "topic"),
        _required(args.node or config.get("broker.node"), "node"),
        credentials=_credentials(config),
        config=ConsumerConfig.from_config(config),
    ) as consumer:
        for poll in range(args.polls):
            if cancel.is_cancelled:
                break

            batch = consumer.batch_receive(cancel)
            for message in batch:
                print(json.dumps({
                    "order_key": message.order_key,
                    "node": message.node,
                    "event": message.event,
                    "body": message.body,
                }))
                if args.ack:
                    consumer.acknowledge(message, cancel)

            if poll < args.polls - 1 and cancel.wait(args.interval):
                break

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    config = Config(args.config)

    configure_logging(
        log_level=args.log_level or config.get("logging.level", "INFO"),
        log_format=args.log_format or config.get("logging.format", "json"),
        log_output="stderr",
    )

    started = time.monotonic()
    try:
        if args.command == 'produce':
            return run_produce(args, config)
        return run_consume(args, config)
    except BrokerError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        return 1
    finally:
        logger.debug("Command finished", elapsed_s=round(time.monotonic() - started, 3))


if __name__ == '__main__':
    sys.exit(main())

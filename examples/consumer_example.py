#!/usr/bin/env python3
"""
Consumer example: poll a topic and print every new message.
"""

import argparse
import json

from gitbroker.backend.base import Credentials
from gitbroker.consumer.consumer import Consumer
from gitbroker.core.cancel import CancellationToken


def main():
    parser = argparse.ArgumentParser(description='gitbroker Consumer Example')
    parser.add_argument('--remote', required=True, help='Repository URI acting as the broker')
    parser.add_argument('--topic', default='PINGPONG', help='Topic name')
    parser.add_argument('--node', default='PONG-NODE', help='Node identity')
    parser.add_argument('--interval', type=float, default=2.0, help='Seconds between polls')
    parser.add_argument('--ack', action='store_true', help='Delete messages once printed')
    parser.add_argument('--username', help='Push username')
    parser.add_argument('--password', default='', help='Push password or token')
    args = parser.parse_args()

    print(f"Consuming from topic '{args.topic}' as node '{args.node}'")
    print("Press Ctrl+C to stop...\n")

    credentials = Credentials(args.username, args.password) if args.username else None
    cancel = CancellationToken()

    consumer = Consumer(
        args.remote,
        topic=args.topic,
        node=args.node,
        credentials=credentials,
        author_name='Example Consumer',
        author_email='consumer@example.org',
    )

    try:
        message_count = 0

        while True:
            batch = consumer.batch_receive(cancel)

            for message in batch:
                try:
                    data = json.loads(message.body)
                except ValueError:
                    data = message.body
                print(f"[{message.order_key}] {message.node} {message.event}: {data}")
                message_count += 1

                if args.ack:
                    consumer.acknowledge(message, cancel)

            if batch.checkpoint is not None:
                print(f"  (checkpoint {batch.checkpoint.file_name})")

            cancel.wait(args.interval)

    except KeyboardInterrupt:
        cancel.cancel()
        print(f"\n\nConsumed {message_count} messages total")

    finally:
        consumer.close()


if __name__ == '__main__':
    main()

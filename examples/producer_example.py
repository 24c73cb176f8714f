#!/usr/bin/env python3
"""
Producer example: publish a stream of JSON messages to a topic.
"""

import argparse
import json
import time

from gitbroker.backend.base import Credentials
from gitbroker.producer.producer import Producer


def main():
    parser = argparse.ArgumentParser(description='gitbroker Producer Example')
    parser.add_argument('--remote', required=True, help='Repository URI acting as the broker')
    parser.add_argument('--topic', default='PINGPONG', help='Topic name')
    parser.add_argument('--node', default='PING-NODE', help='Node identity')
    parser.add_argument('--event', default='PING', help='Event name')
    parser.add_argument('--messages', type=int, default=10, help='Number of messages to send')
    parser.add_argument('--rate', type=float, default=1.0, help='Messages per second')
    parser.add_argument('--username', help='Push username')
    parser.add_argument('--password', default='', help='Push password or token')
    args = parser.parse_args()

    print(f"Producing {args.messages} messages to topic '{args.topic}' at {args.rate} msg/sec")

    credentials = Credentials(args.username, args.password) if args.username else None

    producer = Producer(
        args.remote,
        topic=args.topic,
        node=args.node,
        credentials=credentials,
        author_name='Example Producer',
        author_email='producer@example.org',
    )

    delay = 1.0 / args.rate

    try:
        for i in range(args.messages):
            body = json.dumps({
                'id': i,
                'timestamp': int(time.time() * 1000),
                'value': f'Message number {i}',
            })

            message = producer.publish(args.event, body)
            print(f"Sent {message.file_name}")

            time.sleep(delay)

        print(f"\n[OK] Successfully sent {args.messages} messages!")

    finally:
        producer.close()


if __name__ == '__main__':
    main()

#!/usr/bin/env python3
"""
Ping-pong demo between two nodes sharing one topic.

PING-NODE publishes PING messages and waits for PONG replies; PONG-NODE
answers every PING it receives. Both run in this process against an
in-memory remote, so no git server is needed.
"""

import json
import threading

from gitbroker.backend.memory import InMemoryBackend, InMemoryRemote
from gitbroker.consumer.consumer import Consumer
from gitbroker.core.cancel import CancellationToken
from gitbroker.producer.producer import Producer

TOPIC = 'PINGPONG'
ROUNDS = 5


def ping_node(backend, remote, done):
    producer = Producer(remote.uri, TOPIC, 'PING-NODE', backend=backend)
    consumer = Consumer(remote.uri, TOPIC, 'PING-NODE', backend=backend)
    received = 0

    try:
        for i in range(ROUNDS):
            producer.publish('PING', json.dumps({'round': i}))
            print(f"  PING-NODE -> PING {i}")

            while not done.is_cancelled:
                pongs = [m for m in consumer.batch_receive(done) if m.event == 'PONG']
                if pongs:
                    received += len(pongs)
                    for message in pongs:
                        print(f"  PING-NODE <- PONG {json.loads(message.body)['round']}")
                    break
                done.wait(0.05)
    finally:
        producer.close()
        consumer.close()
        done.cancel()

    print(f"\n[OK] PING-NODE received {received} replies")


def pong_node(backend, remote, done):
    producer = Producer(remote.uri, TOPIC, 'PONG-NODE', backend=backend)
    consumer = Consumer(remote.uri, TOPIC, 'PONG-NODE', backend=backend)

    try:
        while not done.is_cancelled:
            for message in consumer.batch_receive():
                if message.event == 'PING':
                    producer.publish('PONG', message.body)
            done.wait(0.05)
    finally:
        producer.close()
        consumer.close()


def main():
    print("=" * 60)
    print("gitbroker - Ping/Pong Demo")
    print("=" * 60)

    remote = InMemoryRemote()
    backend = InMemoryBackend(remote)
    done = CancellationToken(deadline_ms=30000)

    pong = threading.Thread(target=pong_node, args=(backend, remote, done), daemon=True)
    pong.start()

    ping_node(backend, remote, done)
    pong.join(timeout=5)

    print(f"\nTopic history: {len(remote.history(TOPIC))} commits")
    for name in sorted(remote.files(TOPIC)):
        print(f"  {name}")


if __name__ == '__main__':
    main()

"""Producer client for gitbroker."""

from gitbroker.producer.producer import Producer, ProducerConfig

__all__ = [
    "Producer",
    "ProducerConfig",
]

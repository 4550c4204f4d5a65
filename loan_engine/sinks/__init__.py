"""Output sinks for publishing engine events."""

from loan_engine.sinks.kafka import KafkaEventSink, ProducerConfig, ProducerStats

__all__ = ["KafkaEventSink", "ProducerConfig", "ProducerStats"]

"""Kafka sink publishing run summaries and outcome records."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from confluent_kafka import KafkaException, Producer

from loan_import.config import KafkaConfig
from loan_import.engine.outcomes import RunSummary
from loan_import.exceptions import SinkError
from loan_import.models import Event, new_id
from loan_import.sinks.serialization import to_dict

logger = logging.getLogger(__name__)

EVENT_SOURCE = "loan-import"
IMPORT_COMPLETED = "import.completed"


@dataclass
class ProducerStats:
    """Track producer delivery statistics."""

    sent: int = 0
    delivered: int = 0
    failed: int = 0

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        total = self.delivered + self.failed
        return self.delivered / total if total > 0 else 0.0


class KafkaSink:
    """Publish one ``import.completed`` event per route, plus its skipped rows.

    Messages are keyed by route name so every run of a route lands on the
    same partition.
    """

    def __init__(self, config: KafkaConfig | str) -> None:
        """Initialize Kafka sink.

        Parameters
        ----------
        config : KafkaConfig | str
            Producer configuration or bootstrap servers string.
        """
        if isinstance(config, str):
            config = KafkaConfig(bootstrap_servers=config)

        self.config = config
        self.stats = ProducerStats()
        try:
            self.producer = Producer(config.to_dict())
        except KafkaException as e:
            raise SinkError(f"Cannot create Kafka producer: {e}") from e

    def _delivery_callback(self, err: Any, msg: Any) -> None:
        """Handle delivery reports."""
        if err:
            self.stats.failed += 1
            logger.error("Delivery failed: %s", err)
        else:
            self.stats.delivered += 1
            logger.debug("Delivered to %s[%d]@%d", msg.topic(), msg.partition(), msg.offset())

    def send(self, topic: str, record: Any, key: str | None = None) -> None:
        """Send a single record to a Kafka topic."""
        value = json.dumps(to_dict(record), ensure_ascii=False, default=str).encode("utf-8")
        try:
            self.producer.produce(
                topic=topic,
                key=key.encode("utf-8") if key else None,
                value=value,
                callback=self._delivery_callback,
            )
        except (KafkaException, BufferError) as e:
            raise SinkError(f"Cannot produce to {topic}: {e}") from e
        self.stats.sent += 1
        self.producer.poll(0)

    def write_summary(self, summary: RunSummary) -> Event:
        """Publish the summary of one route as an event.

        Rows that were not persisted as-is follow on the outcomes topic,
        keyed by route like the summary.
        """
        event = Event(
            event_id=new_id(),
            event_type=IMPORT_COMPLETED,
            event_time=datetime.now(),
            source=EVENT_SOURCE,
            subject=summary.route_name,
            data=summary.to_dict(),
            metadata={"reconciled": summary.is_reconciled},
        )
        self.send(self.config.topic, event, key=summary.route_name)
        skipped = [o for o in summary.outcomes if o.detail is not None]
        self.write_batch(self.config.outcomes_topic, skipped, key=summary.route_name)
        return event

    def write_batch(self, topic: str, records: list[Any], key: str | None = None) -> None:
        """Write a batch of records to a Kafka topic and flush."""
        logger.info("Writing batch to %s: %d records", topic, len(records))
        for record in records:
            self.send(topic, record, key=key)
        self.flush()

    def flush(self, timeout: float = 30.0) -> None:
        """Flush pending messages."""
        remaining = self.producer.flush(timeout)
        if remaining:
            logger.warning("%d messages still queued after flush", remaining)

    def close(self) -> None:
        """Flush and close the producer."""
        self.flush()
        logger.info(
            "Kafka sink closed: sent=%d, delivered=%d, failed=%d",
            self.stats.sent,
            self.stats.delivered,
            self.stats.failed,
        )

"""
Kafka producer for publishing row change events
"""
from aiokafka import AIOKafkaProducer
from typing import Optional
import json
import logging

from .config import settings
from .realtime import ChangeEvent, ChangePublisher, topic_for

logger = logging.getLogger(__name__)


class KafkaProducerManager(ChangePublisher):
    """Kafka producer manager for publishing change events"""

    def __init__(self):
        self.producer: Optional[AIOKafkaProducer] = None

    async def start(self):
        """Start Kafka producer"""
        if not settings.KAFKA_ENABLED:
            logger.info("Kafka is disabled")
            return

        try:
            self.producer = AIOKafkaProducer(
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                value_serializer=lambda v: json.dumps(v).encode("utf-8"),
                key_serializer=lambda v: str(v).encode("utf-8") if v else None,
            )
            await self.producer.start()
            logger.info("Kafka producer started successfully")
        except Exception as e:
            logger.warning(f"Failed to start Kafka producer: {e}. Continuing without Kafka.")
            self.producer = None

    async def stop(self):
        """Stop Kafka producer"""
        if self.producer:
            await self.producer.stop()
            logger.info("Kafka producer stopped")

    async def publish_change(self, event: ChangeEvent) -> None:
        """
        Publish a row change to the table's topic

        Keyed by row id so changes to one row stay ordered.
        """
        topic = topic_for(event.table)
        if not self.producer:
            logger.debug(f"Kafka disabled, skipping event: {topic}")
            return

        try:
            await self.producer.send(topic, value=event.to_message(), key=event.record_id)
            logger.info(f"Published {event.type.value} to {topic}: {event.record_id}")
        except Exception as e:
            logger.error(f"Error publishing event to {topic}: {e}")


# Global producer instance
kafka_producer = KafkaProducerManager()


async def get_kafka_producer() -> KafkaProducerManager:
    """Dependency for getting Kafka producer instance"""
    return kafka_producer

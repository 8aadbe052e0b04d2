# negotiation_service/core/kafka_producer.py

import json
import logging
from kafka import KafkaProducer
from kafka.errors import KafkaError
from negotiation_service.core.config import settings

logger = logging.getLogger(__name__)


def get_kafka_producer():
    """
    FastAPI dependency yielding a Kafka producer for negotiation events.

    Yields None when no broker can be reached; negotiation transitions go
    ahead without their notifications in that case.
    """
    try:
        producer = KafkaProducer(
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
            request_timeout_ms=5000,
            api_version_auto_timeout_ms=3000,
            max_block_ms=3000,
        )
    except KafkaError as e:
        logger.warning(f"Kafka unavailable, negotiation events will not be published: {e}")
        yield None
        return

    try:
        yield producer
    finally:
        try:
            producer.flush(timeout=5)
            producer.close(timeout=5)
        except KafkaError as e:
            logger.warning(f"Failed to flush negotiation events: {e}")

import pytest
from unittest.mock import MagicMock, patch

from kafka.errors import KafkaTimeoutError, NoBrokersAvailable

from negotiation_service.core.kafka_producer import get_kafka_producer


class TestGetKafkaProducer:

    def test_yields_none_without_broker(self):
        with patch(
            "negotiation_service.core.kafka_producer.KafkaProducer",
            side_effect=NoBrokersAvailable(),
        ):
            dependency = get_kafka_producer()
            assert next(dependency) is None
            with pytest.raises(StopIteration):
                next(dependency)

    def test_flush_failure_is_not_raised(self):
        producer = MagicMock()
        producer.flush.side_effect = KafkaTimeoutError("flush timed out")

        with patch("negotiation_service.core.kafka_producer.KafkaProducer", return_value=producer):
            dependency = get_kafka_producer()
            assert next(dependency) is producer
            with pytest.raises(StopIteration):
                next(dependency)

        producer.flush.assert_called_once()

    def test_closes_producer_after_request(self):
        producer = MagicMock()

        with patch("negotiation_service.core.kafka_producer.KafkaProducer", return_value=producer):
            dependency = get_kafka_producer()
            next(dependency)
            with pytest.raises(StopIteration):
                next(dependency)

        producer.flush.assert_called_once()
        producer.close.assert_called_once()

import logging
import json
import time
from typing import Any, Dict, Optional

from kafka import KafkaProducer
from kafka.errors import KafkaError, NoBrokersAvailable

from zta.config import settings
from zta.errors import ServiceUnavailableError

logger = logging.getLogger("ZTA.KafkaProducer")

# Singleton instance of the producer used globally
_producer_instance = {"producer": None}


def create_kafka_producer(max_attempts: Optional[int] = None) -> KafkaProducer:
    """
    Create and return a KafkaProducer instance.
    Retries every 5s while the brokers are starting, forever unless
    max_attempts is given.
    """
    logger.info("Attempting to create KafkaProducer...")
    attempts = 0
    while True:
        attempts += 1
        try:
            producer = KafkaProducer(
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
                key_serializer=lambda k: k.encode("utf-8"),
                retries=5,
                retry_backoff_ms=1000,
                acks="all",
                client_id="zta-api-producer"
            )
            logger.info("KafkaProducer connection ESTABLISHED")
            return producer
        except NoBrokersAvailable:
            logger.warning("Kafka brokers are not available. Retrying in 5s...")
        except KafkaError as e:
            logger.error(f"Failed to create KafkaProducer: {e}. Retrying in 5s...")

        if max_attempts and attempts >= max_attempts:
            raise ServiceUnavailableError("Event pipeline is unavailable")
        time.sleep(5)


def get_kafka_producer() -> Optional[KafkaProducer]:
    """
    Return the singleton KafkaProducer, or None when Kafka is disabled and
    events are written straight to the database.
    """
    if not settings.KAFKA_ENABLED:
        return None

    # Normally initialised in the app lifespan
    if _producer_instance["producer"] is None:
        logger.warning("KafkaProducer not initialized. Initializing now...")
        _producer_instance["producer"] = create_kafka_producer(max_attempts=3)

    return _producer_instance["producer"]


def set_kafka_producer(producer: Optional[KafkaProducer]):
    """Sets the global producer instance"""
    _producer_instance["producer"] = producer


def publish_record(producer: KafkaProducer, record: Dict[str, Any]):
    """
    Queues one event record on the main topic, keyed by site so a site's
    events stay ordered within a partition.
    """
    try:
        producer.send(settings.KAFKA_MAIN_TOPIC, key=record["site_id"], value=record)
    except KafkaError as e:
        logger.error(f"CRITICAL: Failed to send event to Kafka: {e}")
        raise ServiceUnavailableError("Event processing is temporarily unavailable. Please try again later.")


def close_kafka_producer():
    """
    Flush and close the singleton KafkaProducer connection.
    """
    producer = _producer_instance["producer"]
    if producer:
        logger.info("Flushing and closing KafkaProducer...")
        producer.flush()
        producer.close()
        _producer_instance["producer"] = None
        logger.info("KafkaProducer closed.")

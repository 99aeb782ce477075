import logging
import time
from typing import Optional

from kafka import KafkaConsumer, KafkaProducer
from kafka.errors import KafkaError, NoBrokersAvailable

from zta.config import settings
from zta.worker.utils import is_shutdown_requested

logger = logging.getLogger("ZTAWorker.Clients")

RETRY_SECONDS = 5


def create_consumer() -> Optional[KafkaConsumer]:
    """Connects to the events topic with manual commits, retrying until shutdown."""
    logger.info("Attempting to connect Kafka Consumer...")
    while not is_shutdown_requested():
        try:
            consumer = KafkaConsumer(
                settings.KAFKA_MAIN_TOPIC,
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                group_id=settings.KAFKA_CONSUMER_GROUP_ID,
                enable_auto_commit=False,
                value_deserializer=lambda v: v.decode("utf-8"),
                auto_offset_reset="earliest",
                max_poll_records=settings.WORKER_MAX_POLL_RECORDS,
                client_id="zta-worker-consumer"
            )
            logger.info("Kafka Consumer connection ESTABLISHED.")
            return consumer
        except NoBrokersAvailable:
            logger.warning(f"Kafka brokers not available. Retrying in {RETRY_SECONDS}s...")
        except KafkaError as e:
            logger.error(f"Failed to create Kafka Consumer: {e}. Retrying in {RETRY_SECONDS}s...")
        time.sleep(RETRY_SECONDS)

    logger.info("Shutdown requested during consumer creation.")
    return None


def create_dlq_producer() -> Optional[KafkaProducer]:
    """Producer for the dead letter topic, retrying until shutdown."""
    logger.info("Attempting to connect Kafka DLQ Producer...")
    while not is_shutdown_requested():
        try:
            producer = KafkaProducer(
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                value_serializer=lambda v: v.encode("utf-8") if isinstance(v, str) else v,
                retries=5,
                acks="all",
                client_id="zta-worker-dlq-producer"
            )
            logger.info("Kafka DLQ Producer connection ESTABLISHED.")
            return producer
        except NoBrokersAvailable:
            logger.warning(f"Kafka brokers not available (for DLQ). Retrying in {RETRY_SECONDS}s...")
        except KafkaError as e:
            logger.error(f"Failed to create Kafka DLQ Producer: {e}. Retrying in {RETRY_SECONDS}s...")
        time.sleep(RETRY_SECONDS)

    logger.info("Shutdown requested during DLQ producer creation.")
    return None

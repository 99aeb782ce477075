import json
import logging
import time

from kafka import KafkaConsumer, KafkaProducer
from kafka.errors import KafkaError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlmodel import Session

from zta.config import settings
from zta.db import engine as db_engine
from zta.storage import get_rules, get_sites
from zta.webhooks import dispatch_records
from zta.worker.clients import create_consumer, create_dlq_producer
from zta.worker.processing import process_message_batch, send_to_dlq
from zta.worker.utils import setup_signal_handlers, is_shutdown_requested, touch_healthcheck_file

logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger("ZTAWorker.Main")

DB_RETRY_SECONDS = 10
ERROR_BACKOFF_SECONDS = 5


def rewind_batch(consumer: KafkaConsumer, start_offsets: dict):
    for tp, offset in start_offsets.items():
        consumer.seek(tp, offset)


def run_batch(
    consumer: KafkaConsumer,
    dlq_producer: KafkaProducer,
    db_engine: Engine,
) -> bool:
    """
    Polls and stores one batch. Returns False when the batch was rewound
    for a retry and nothing was committed.
    """
    batch = consumer.poll(timeout_ms=settings.WORKER_POLL_TIMEOUT * 1000)
    if not batch:
        touch_healthcheck_file()
        return True

    logger.info(f"Processing batch with {sum(len(m) for m in batch.values())} messages...")

    # Starting offsets in case we need to rewind
    start_offsets = {tp: messages[0].offset for tp, messages in batch.items()}

    try:
        events, records, offsets_to_commit = process_message_batch(batch, get_sites(), dlq_producer)
    except Exception:
        rewind_batch(consumer, start_offsets)
        raise

    if events:
        with Session(db_engine) as session:
            try:
                session.add_all(events)
                session.commit()
                logger.info(f"Successfully inserted {len(events)} events into DB.")
            except OperationalError as e:
                logger.error(f"Database connection error: {e}. Rewinding batch and retrying...")
                session.rollback()
                rewind_batch(consumer, start_offsets)
                time.sleep(DB_RETRY_SECONDS)
                return False
            except SQLAlchemyError as e:
                logger.error(f"Failed to insert batch into DB (non-retryable): {e}. Sending batch to DLQ.")
                session.rollback()
                for record in records:
                    send_to_dlq(dlq_producer, settings.KAFKA_DLQ_TOPIC, json.dumps(record, default=str))
                records = []

    if offsets_to_commit:
        consumer.commit(offsets_to_commit)
        logger.debug("Offsets committed to Kafka.")

    if records:
        dispatch_records(records, get_rules())

    touch_healthcheck_file()
    return True


def main_loop(
    consumer: KafkaConsumer,
    dlq_producer: KafkaProducer,
    db_engine: Engine,
):
    """Polls, stores and commits until a shutdown signal arrives."""
    while not is_shutdown_requested():
        try:
            run_batch(consumer, dlq_producer, db_engine)
        except KafkaError as e:
            logger.error(f"Kafka error in main loop: {e}. Sleeping for {ERROR_BACKOFF_SECONDS}s...")
            time.sleep(ERROR_BACKOFF_SECONDS)
        except Exception as e:
            logger.exception(f"Unexpected error in main loop: {e}. Sleeping for {ERROR_BACKOFF_SECONDS}s...")
            time.sleep(ERROR_BACKOFF_SECONDS)


# Entry point
def main():
    logger.info("Starting ZTA Worker...")
    setup_signal_handlers()

    consumer = create_consumer()
    dlq_producer = create_dlq_producer()
    if consumer is None or dlq_producer is None:
        logger.info("Worker stopped before connecting.")
        return

    try:
        main_loop(consumer, dlq_producer, db_engine)
    finally:
        logger.info("Shutting down worker...")
        consumer.close()
        dlq_producer.close()
        logger.info("Worker shutdown complete.")


if __name__ == "__main__":
    main()

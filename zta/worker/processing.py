import json
import logging
from typing import Any, Dict, List, Tuple

from kafka import KafkaProducer
from kafka.errors import KafkaError
from kafka.structs import TopicPartition, OffsetAndMetadata

from zta.analytics import record_to_event
from zta.config import settings
from zta.models import AnalyticsEvent
from zta.storage import SiteStore

logger = logging.getLogger("ZTAWorker.Processing")


def send_to_dlq(dlq_producer: KafkaProducer, topic: str, value: Any):
    """Sends a single raw message to the Dead Letter Queue."""
    try:
        dlq_producer.send(topic, value=value)
    except KafkaError as ke:
        logger.error(f"CRITICAL: Failed to send to DLQ: {ke}")


def process_message_batch(
    batch: Dict[TopicPartition, List],
    sites: SiteStore,
    dlq_producer: KafkaProducer
) -> Tuple[List[AnalyticsEvent], List[Dict[str, Any]], Dict[TopicPartition, OffsetAndMetadata]]:
    """
    Turns a polled batch into table rows.
    Returns (events to insert, their source records, offsets to commit).
    Unparseable messages go to the DLQ; events of deleted sites are dropped.
    """
    events: List[AnalyticsEvent] = []
    records: List[Dict[str, Any]] = []
    offsets_to_commit: Dict[TopicPartition, OffsetAndMetadata] = {}
    known_sites: Dict[str, bool] = {}

    for tp, messages in batch.items():
        for msg in messages:
            try:
                record = json.loads(msg.value)
                if not isinstance(record, dict):
                    raise ValueError("Message is not a JSON object")
                event = record_to_event(record)

                site_id = record["site_id"]
                if site_id not in known_sites:
                    known_sites[site_id] = sites.get_site(site_id) is not None
                if known_sites[site_id]:
                    events.append(event)
                    records.append(record)
                else:
                    logger.warning(f"Dropping event for unknown site {site_id}")

            except (json.JSONDecodeError, ValueError, TypeError) as e:
                # Poison pill: park it and move on
                logger.error(f"Failed to parse message (Offset {msg.offset}): {e}. Sending to DLQ.")
                send_to_dlq(dlq_producer, settings.KAFKA_DLQ_TOPIC, msg.value)

            # Committed even for dropped messages so the partition never stalls
            offsets_to_commit[tp] = OffsetAndMetadata(msg.offset + 1, None, None)

    return events, records, offsets_to_commit

import json
import logging
import threading
import time

import pika
from sqlalchemy.orm import Session

from app import config, database, fees

EXCHANGE = "ums_events"
FEE_EVENT_TYPES = {"EnrollmentFeeAssigned", "RegistrationPendingPayment"}

logger = logging.getLogger(__name__)


def publish_event(rabbitmq_url: str, routing_key: str, event: dict):
    if not rabbitmq_url:
        logger.debug("RABBITMQ_URL not set, dropping %s event", event.get("type"))
        return
    try:
        params = pika.URLParameters(rabbitmq_url)
        connection = pika.BlockingConnection(params)
        try:
            channel = connection.channel()
            channel.exchange_declare(exchange=EXCHANGE, exchange_type="topic", durable=True)
            body = json.dumps(event, default=str)
            channel.basic_publish(
                exchange=EXCHANGE,
                routing_key=routing_key,
                body=body,
                properties=pika.BasicProperties(content_type="application/json", delivery_mode=2),
            )
        finally:
            connection.close()
        logger.info("Published %s on %s", event.get("type"), routing_key)
    except Exception:
        logger.exception("Error publishing %s event", event.get("type"))


def publish_lock_confirmed(lock):
    publish_event(config.RABBITMQ_URL, "payment.events.locked", {
        "type": "PaymentLocked",
        "payload": {
            "registration_number": lock.registration_number,
            "enrollment_id": lock.enrollment_id,
            "payment_type": lock.payment_type,
        },
    })


def publish_transaction_verified(txn):
    publish_event(config.RABBITMQ_URL, "payment.events.verified", {
        "type": "PaymentVerified",
        "payload": {
            "order_id": txn.order_id,
            "payment_id": txn.payment_id,
            "registration_number": txn.registration_number,
            "enrollment_id": txn.enrollment_id,
            "payment_type": txn.payment_type,
            "period_index": txn.period_index,
            "amount": txn.amount,
        },
    })


def process_enrollment_event(body: dict, db: Session):
    """
    Called for every enrollment event. Fee-bearing events carry the fee terms
    agreed for one enrollment; they are stored so fee lookups can be scoped
    per enrollment. Other event types are ignored.
    """
    event_type = body.get("type")
    if event_type not in FEE_EVENT_TYPES:
        logger.debug("Ignoring enrollment event %s", event_type)
        return None

    payload = body.get("payload", {})
    registration_number = payload.get("registration_number") or payload.get("student_id")
    if not registration_number:
        logger.warning("Enrollment event %s has no registration number, skipping", event_type)
        return None

    return fees.upsert_course_fee(db, {
        "registration_number": str(registration_number),
        "enrollment_id": str(payload["enrollment_id"]) if payload.get("enrollment_id") is not None else None,
        "course_name": payload.get("course_name"),
        "total_fees": payload.get("total_fees", payload.get("amount", 0)),
        "discount_percentage": payload.get("discount_percentage", 0),
        "duration": payload.get("duration"),
    })


def _consumer_runloop(database_url: str, rabbitmq_url: str, queue_name: str = ""):
    """
    Persistent consumer loop: connects, declares exchange & queue, binds and consumes.
    Reconnects on errors with backoff.
    """
    database.init_db(database_url)

    while True:
        conn = None
        try:
            params = pika.URLParameters(rabbitmq_url)
            conn = pika.BlockingConnection(params)
            ch = conn.channel()
            ch.exchange_declare(exchange=EXCHANGE, exchange_type="topic", durable=True)

            if queue_name:
                ch.queue_declare(queue=queue_name, durable=True, exclusive=False)
                actual_queue = queue_name
            else:
                q = ch.queue_declare(queue="", exclusive=True)
                actual_queue = q.method.queue

            ch.queue_bind(exchange=EXCHANGE, queue=actual_queue, routing_key="enrollment.events.#")
            logger.info("Payment consumer bound queue=%s to %s with key=enrollment.events.#", actual_queue, EXCHANGE)

            def callback(ch, method, properties, body):
                try:
                    message = json.loads(body)
                    db = database.SessionLocal()
                    try:
                        process_enrollment_event(message, db)
                    finally:
                        db.close()
                    ch.basic_ack(delivery_tag=method.delivery_tag)
                except Exception:
                    logger.exception("Error processing enrollment event, dropping message")
                    ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)

            ch.basic_qos(prefetch_count=1)
            ch.basic_consume(queue=actual_queue, on_message_callback=callback, auto_ack=False)
            ch.start_consuming()

        except pika.exceptions.AMQPConnectionError as e:
            logger.warning("AMQP connection error in consumer: %s", e)
        except Exception:
            logger.exception("Unexpected exception in consumer loop")
        finally:
            if conn and conn.is_open:
                try:
                    conn.close()
                except pika.exceptions.AMQPError:
                    logger.debug("Consumer connection already closed")

        logger.info("Payment consumer will reconnect after backoff...")
        time.sleep(3)


_consumer = None


def start_consumer(database_url: str, rabbitmq_url: str, queue_name: str = ""):
    global _consumer
    if _consumer is None:
        _consumer = threading.Thread(
            target=_consumer_runloop,
            args=(database_url, rabbitmq_url, queue_name),
            name="enrollment-event-consumer",
            daemon=True,
        )
        _consumer.start()

"""User activity audit sinks."""

from __future__ import annotations

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError
import structlog

from .config import KafkaConfig, RetryConfig
from .interfaces import AuditSink
from .models import AuditRecord
from .retry import with_retry

logger = structlog.get_logger()


class LogAuditSink(AuditSink):
    """Writes audit records to the structured log only."""

    async def record(
        self,
        actor: str,
        action: str,
        object_id: str,
        object_path: str,
        detail: str,
    ) -> None:
        logger.info(
            "user_activity",
            actor=actor,
            action=action,
            object_id=object_id,
            object_path=object_path,
            detail=detail,
        )


class KafkaAuditSink(AuditSink):
    """Publishes :class:`AuditRecord` JSON to the audit topic.

    Delivery is retried with exponential backoff per ``RetryConfig``.
    """

    def __init__(self, config: KafkaConfig, retry_config: RetryConfig) -> None:
        self._config = config
        self._retry_config = retry_config
        self._producer: AIOKafkaProducer | None = None

    async def start(self) -> None:
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self._config.bootstrap_servers,
            acks=self._config.producer_acks,
            compression_type=self._config.producer_compression,
            value_serializer=lambda v: v.encode("utf-8") if isinstance(v, str) else v,
        )
        await self._producer.start()
        logger.info("kafka_audit_sink_started", servers=self._config.bootstrap_servers)

    async def stop(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
            self._producer = None
            logger.info("kafka_audit_sink_stopped")

    async def record(
        self,
        actor: str,
        action: str,
        object_id: str,
        object_path: str,
        detail: str,
    ) -> None:
        assert self._producer is not None, "Producer not started"
        audit = AuditRecord(
            actor=actor,
            action=action,
            object_id=object_id,
            object_path=object_path,
            detail=detail,
        )
        producer = self._producer

        @with_retry(
            self._retry_config,
            retryable_exceptions=(KafkaError, OSError),
            operation="audit_record",
        )
        async def _send() -> None:
            await producer.send_and_wait(
                self._config.audit_topic,
                value=audit.model_dump_json().encode("utf-8"),
                key=actor.encode("utf-8"),
            )

        await _send()
        logger.debug("audit_record_sent", topic=self._config.audit_topic, action=action)

"""Kafka transport implementation using aiokafka."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Iterable, Optional, Tuple

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.structs import TopicPartition
from pydantic import ValidationError

from ..contracts import Envelope
from .base import BaseTransport

logger = logging.getLogger(__name__)


class KafkaTransport(BaseTransport[Any]):
    """Kafka-based transport for distributed messaging.

    Messages are keyed by workflow id so that every event of one workflow
    lands on the same partition and keeps its order.
    """

    def __init__(
        self,
        brokers: Iterable[str] | str = "localhost:9092",
        group_id: str = "finagent",
        dlq_topic: str = "finagent.deadletter",
    ) -> None:
        self.brokers = [brokers] if isinstance(brokers, str) else list(brokers)
        self.group_id = group_id
        self.dlq_topic = dlq_topic
        self._producer: Optional[AIOKafkaProducer] = None
        self._consumer: Optional[AIOKafkaConsumer] = None

    async def connect(self) -> None:
        self._producer = AIOKafkaProducer(bootstrap_servers=self.brokers)
        self._consumer = AIOKafkaConsumer(
            bootstrap_servers=self.brokers,
            group_id=self.group_id,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
        )
        await self._producer.start()
        await self._consumer.start()

    async def disconnect(self) -> None:
        if self._consumer:
            await self._consumer.stop()
            self._consumer = None
        if self._producer:
            await self._producer.stop()
            self._producer = None

    async def publish(self, topic: str, message: Envelope) -> None:
        if not self._producer:
            raise RuntimeError("KafkaTransport not connected")
        await self._producer.send_and_wait(
            topic,
            value=message.to_json().encode(),
            key=message.correlation_id.encode(),
        )

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Any, Envelope]]:
        if not self._consumer:
            raise RuntimeError("KafkaTransport not connected")
        self._consumer.subscribe([topic])
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break
            try:
                msg = await asyncio.wait_for(self._consumer.getone(), timeout=1)
            except asyncio.TimeoutError:
                continue
            try:
                envelope = Envelope.from_json(msg.value.decode())
            except ValidationError as e:
                logger.error(f"Dead-lettering malformed message on {topic}: {e}")
                await self.nack(msg, requeue=False)
                continue
            yield msg, envelope

    async def ack(self, raw_message: Any) -> None:
        if not self._consumer:
            raise RuntimeError("KafkaTransport not connected")
        tp = TopicPartition(raw_message.topic, raw_message.partition)
        await self._consumer.commit({tp: raw_message.offset + 1})

    async def nack(self, raw_message: Any, requeue: bool = True) -> None:
        if not self._consumer:
            raise RuntimeError("KafkaTransport not connected")
        if requeue:
            tp = TopicPartition(raw_message.topic, raw_message.partition)
            self._consumer.seek(tp, raw_message.offset)
        else:
            if self._producer:
                await self._producer.send_and_wait(
                    self.dlq_topic, value=raw_message.value
                )
            await self.ack(raw_message)

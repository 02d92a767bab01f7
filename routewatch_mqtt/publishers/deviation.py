"""
Deviation Publishers
====================

Bounded Context: Deviation Message Production

One publisher per output stream of the tracker, each on a per-person topic:

    DeviationStatusPublisher  routewatch/data/status/{person_id}    QoS 1, retained
    GuidancePublisher         routewatch/data/guidance/{person_id}  QoS 0
    FeedbackCuePublisher      routewatch/data/cues/{person_id}      QoS 0

Status is retained so a caregiver app that connects late still sees whether
the person is on or off route.

Example:
    >>> publisher = DeviationStatusPublisher(
    ...     broker_host="localhost",
    ...     topic_template="routewatch/data/status/{person_id}",
    ...     logger=create_logger("status_publisher"),
    ... )
    >>> publisher.connect()
    >>> publisher.publish_status(status_message)
"""

from typing import Dict, Any, Optional
from .base import BasePublisher
from ..schemas import DeviationStatusMessage, GuidanceMessage, FeedbackCueMessage
from ..logging import StructuredLogger, LogEvent


class PersonMessagePublisher(BasePublisher):
    """
    Publishes message dataclasses that carry a person_id and a to_dict().

    Subclasses set the defaults below and log their own success event in
    _on_published().
    """

    DEFAULT_CLIENT_ID = "routewatch_publisher"
    DEFAULT_QOS = 0
    RETAIN = False

    def __init__(
        self,
        broker_host: str,
        topic_template: str,
        logger: StructuredLogger,
        broker_port: int = 1883,
        client_id: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: Optional[int] = None
    ):
        super().__init__(
            broker_host=broker_host,
            broker_port=broker_port,
            topic_template=topic_template,
            client_id=client_id or self.DEFAULT_CLIENT_ID,
            logger=logger,
            username=username,
            password=password,
            qos=self.DEFAULT_QOS if qos is None else qos
        )

    def format_message(self, message) -> Dict[str, Any]:
        """message.to_dict(); ValueError (logged) if it cannot be serialized."""
        try:
            return message.to_dict()
        except (AttributeError, TypeError, ValueError) as e:
            self.logger.error(
                event=LogEvent.SERIALIZATION_ERROR,
                message=f"Cannot serialize {type(message).__name__}",
                exc_info=e,
                metadata={'person_id': getattr(message, 'person_id', None)}
            )
            raise ValueError(f"Failed to format {type(message).__name__}: {e}") from e

    def _send(self, message) -> bool:
        try:
            data = self.format_message(message)
            topic = self.topic_for(message.person_id)
        except (KeyError, IndexError, ValueError) as e:
            self.logger.error(
                event=LogEvent.MQTT_PUBLISH_ERROR,
                message=f"{type(message).__name__} not published",
                exc_info=e,
                metadata={'person_id': message.person_id}
            )
            return False

        if not self.publish(data, topic=topic, retain=self.RETAIN):
            return False
        self._on_published(message)
        return True

    def _on_published(self, message) -> None:
        pass


class DeviationStatusPublisher(PersonMessagePublisher):
    """Caregiver notifications: one retained message per transition."""

    DEFAULT_CLIENT_ID = "routewatch_status_publisher"
    DEFAULT_QOS = 1
    RETAIN = True

    def publish_status(self, status_msg: DeviationStatusMessage) -> bool:
        return self._send(status_msg)

    def _on_published(self, status_msg: DeviationStatusMessage) -> None:
        self.logger.info(
            event=LogEvent.DEVIATION_STATUS_PUBLISHED,
            message=f"Published {status_msg.status.value}",
            metadata={
                'person_id': status_msg.person_id,
                'status': status_msg.status.value,
                'event_timestamp': status_msg.event_timestamp_ms,
            }
        )


class GuidancePublisher(PersonMessagePublisher):
    """Return guidance (steps and turn). Null fields mean "calculating"."""

    DEFAULT_CLIENT_ID = "routewatch_guidance_publisher"

    def publish_guidance(self, guidance_msg: GuidanceMessage) -> bool:
        return self._send(guidance_msg)

    def _on_published(self, guidance_msg: GuidanceMessage) -> None:
        turn = guidance_msg.turn_direction
        self.logger.debug(
            event=LogEvent.GUIDANCE_PUBLISHED,
            message="Published guidance",
            metadata={
                'person_id': guidance_msg.person_id,
                'steps_to_target': guidance_msg.steps_to_target,
                'turn_direction': turn.value if turn else None,
            }
        )


class FeedbackCuePublisher(PersonMessagePublisher):
    """Alarm and directional cues for the wearer's device."""

    DEFAULT_CLIENT_ID = "routewatch_cue_publisher"

    def publish_cue(self, cue_msg: FeedbackCueMessage) -> bool:
        return self._send(cue_msg)

    def _on_published(self, cue_msg: FeedbackCueMessage) -> None:
        self.logger.debug(
            event=LogEvent.CUE_PUBLISHED,
            message=f"Published {cue_msg.cue_type.value} cue",
            metadata={'person_id': cue_msg.person_id, 'sequence': cue_msg.sequence}
        )

#!/usr/bin/env python3
"""
RouteWatch Tracker - Service Entry Point
========================================

Wires the MQTT clients around a DeviationTrackingService and runs it until
SIGINT/SIGTERM:

    routewatch/data/locations/+  ──► MessageSubscriber ──► service
    service ──► status / guidance / cue publishers (per person topics)
    routewatch/control/<service_id>/commands ◄─► MQTTControlPlane

Usage:
    python run_tracker.py --config config/tracker_config.yaml
    python run_tracker.py --config config/tracker_config.yaml --no-log-file -v

ROUTEWATCH_* environment variables override the YAML (see
routewatch_processor.config.apply_env_overrides).
"""

import argparse
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import yaml

from routewatch_processor import DeviationTrackingService, apply_env_overrides
from routewatch_processor.config import TrackerConfig
from routewatch_control import MQTTControlPlane
from routewatch_mqtt import (
    DeviationStatusPublisher,
    FeedbackCuePublisher,
    GuidancePublisher,
    MessageSubscriber,
    create_logger,
)

logger = logging.getLogger("run_tracker")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(log_file: Optional[Path], verbose: bool) -> None:
    """Console always; a rotating file when log_file is given."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=5_000_000, backupCount=3))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )


def build_service(config: TrackerConfig) -> DeviationTrackingService:
    """
    Create every MQTT client for one tracker instance and the service that
    owns them. Nothing connects until service.start().
    """
    mqtt = config.mqtt_config
    sid = config.service_id
    credentials = dict(username=mqtt.username, password=mqtt.password)

    control_plane = MQTTControlPlane(
        broker_host=mqtt.broker,
        broker_port=mqtt.port,
        command_topic=f"routewatch/control/{sid}/commands",
        status_topic=f"routewatch/control/{sid}/status",
        client_id=f"tracker_{sid}",
        **credentials,
    )

    publisher_logger = create_logger(component="mqtt_publisher")

    def publisher(cls, topic_template: str, name: str, qos: int):
        return cls(
            broker_host=mqtt.broker,
            broker_port=mqtt.port,
            topic_template=topic_template,
            client_id=f"publisher_{name}_{sid}",
            logger=publisher_logger,
            qos=qos,
            **credentials,
        )

    service = DeviationTrackingService(
        config=config,
        control_plane=control_plane,
        # Caregiver notifications must not be lost: at least QoS 1
        status_publisher=publisher(DeviationStatusPublisher, mqtt.status_topic, "status", max(1, mqtt.qos)),
        guidance_publisher=publisher(GuidancePublisher, mqtt.guidance_topic, "guidance", mqtt.qos),
        cue_publisher=publisher(FeedbackCuePublisher, mqtt.cue_topic, "cues", mqtt.qos),
    )
    service.subscriber = MessageSubscriber(
        broker_host=mqtt.broker,
        broker_port=mqtt.port,
        location_topic=mqtt.location_topic,
        on_location=service.handle_location,
        logger=create_logger(component="location_subscriber"),
        client_id=f"subscriber_locations_{sid}",
        qos=mqtt.qos,
        **credentials,
    )

    logger.info(f"📥 Locations: {mqtt.location_topic}")
    logger.info(f"📤 Status: {mqtt.status_topic}")
    logger.info(f"📤 Guidance: {mqtt.guidance_topic}")
    logger.info(f"📤 Cues: {mqtt.cue_topic}")
    return service


def run(service: DeviationTrackingService) -> int:
    """Start, block until a stop signal, stop. Returns the exit code."""

    def on_signal(signum, frame):
        logger.info(f"⚠️  {signal.Signals(signum).name} received, stopping")
        service.stop()

    signal.signal(signal.SIGTERM, on_signal)
    signal.signal(signal.SIGINT, on_signal)

    try:
        service.start()
    except RuntimeError as e:
        logger.error(f"❌ {e}")
        service.control_plane.disconnect()
        return 1

    logger.info("✅ Tracker running (Ctrl+C to stop)")
    # Returns once stop() has run, whichever thread called it
    service.wait()
    logger.info("👋 Tracker stopped")
    return 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="RouteWatch tracker: location samples in, caregiver alerts and guidance out",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_tracker.py --config config/tracker_config.yaml

  # Shorter confirmation delay for field tests
  ROUTEWATCH_CONFIRMATION_DELAY_MS=2000 python run_tracker.py --config config/tracker_config.yaml
        """
    )
    parser.add_argument('--config', type=Path, required=True, help='Tracker YAML file')
    parser.add_argument(
        '--log-file', type=Path, default=Path('logs/tracker.log'),
        help='Rotating log file (default: logs/tracker.log)'
    )
    parser.add_argument('--no-log-file', action='store_true', help='Console logging only')
    parser.add_argument('-v', '--verbose', action='store_true', help='DEBUG log level')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(None if args.no_log_file else args.log_file, args.verbose)

    try:
        config = apply_env_overrides(TrackerConfig.from_yaml(args.config))
    except (OSError, KeyError, TypeError, ValueError, yaml.YAMLError) as e:
        logger.error(f"❌ Cannot load {args.config}: {e}")
        return 1

    logger.info(
        f"🚀 Tracker {config.service_id}: {len(config.routes)} route(s), "
        f"confirmation after {config.deviation.confirmation_delay_ms} ms"
    )
    service = build_service(config)
    service.setup()
    return run(service)


if __name__ == '__main__':
    sys.exit(main())

"""
RouteWatch CLI - Main entry point.

Provides command-line interface for sending MQTT commands to
DeviationTrackingService.
"""

import argparse
import time
import yaml
import sys
from pathlib import Path
from typing import Dict, Any

from .mqtt_client import MQTTCommandClient


def load_yaml_config(config_path: str) -> Dict[str, Any]:
    """
    Load YAML configuration file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If YAML is invalid
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")

    if not isinstance(config, dict):
        raise ValueError(f"Expected a mapping in {config_path}")
    return config


def build_register_command(config: Dict[str, Any], route_id: str = None) -> Dict[str, Any]:
    """
    Build a register_route command from a route YAML document.

    The document holds `points` (list of {latitude, longitude, timestamp}),
    optionally `route_id`, `radius_meters` and `person_id`.
    """
    command = {'command': 'register_route'}
    command['route_id'] = route_id or config.get('route_id')
    if not command['route_id']:
        raise ValueError("route_id missing (pass --route-id or set it in the YAML)")

    points = config.get('points')
    if not points:
        raise ValueError("Route YAML must contain a non-empty 'points' list")
    command['points'] = list(points)

    radius = config.get('radius_meters', config.get('radius_m'))
    if radius is not None:
        command['radius_meters'] = float(radius)
    if config.get('person_id'):
        command['person_id'] = config['person_id']
    return command


def build_location_payload(
    latitude: float,
    longitude: float,
    heading: float,
    timestamp_ms: int = None,
) -> Dict[str, Any]:
    """Location sample payload (as a phone would publish it)."""
    return {
        'schema_version': '1.0',
        'latitude': latitude,
        'longitude': longitude,
        'heading': heading,
        'timestamp': timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
    }


def send_command(
    command: Dict[str, Any],
    service_id: str = "tracker_01",
    broker: str = "localhost",
    port: int = 1883
) -> None:
    """
    Send command to DeviationTrackingService via MQTT.

    Args:
        command: Command dictionary
        service_id: Target service ID
        broker: MQTT broker host
        port: MQTT broker port
    """
    topic = f"routewatch/control/{service_id}/commands"

    client = MQTTCommandClient(broker=broker, port=port)
    client.send_command(topic, command, qos=1)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="RouteWatch CLI - Send MQTT commands to DeviationTrackingService",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Register route from YAML (points recorded by the phone)
  routewatch-cli register-route config/commands/register_park_loop.yaml

  # Assign / unassign routes
  routewatch-cli assign grandma park_loop
  routewatch-cli unassign grandma park_loop

  # Suspend detection while a new route is recorded
  routewatch-cli begin-registration grandma
  routewatch-cli end-registration grandma

  # Silence alarm (turn instructions continue)
  routewatch-cli dismiss-alarm grandma

  # Inspect
  routewatch-cli list-routes
  routewatch-cli list-sessions

  # Inject a location sample (testing)
  routewatch-cli send-location grandma 40.4168 -3.7038 --heading 90
"""
    )

    # Global arguments
    parser.add_argument(
        "--service-id",
        default="tracker_01",
        help="Target service ID (default: tracker_01)"
    )
    parser.add_argument(
        "--broker",
        default="localhost",
        help="MQTT broker host (default: localhost)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=1883,
        help="MQTT broker port (default: 1883)"
    )

    # Subcommands
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    register = subparsers.add_parser('register-route', help='Register route from YAML')
    register.add_argument('config', help='Path to route YAML')
    register.add_argument('--route-id', help='Override route_id from YAML')

    remove_route = subparsers.add_parser('remove-route', help='Remove route by ID')
    remove_route.add_argument('route_id', help='Route ID to remove')

    assign = subparsers.add_parser('assign', help='Assign route to person')
    assign.add_argument('person_id')
    assign.add_argument('route_id')

    unassign = subparsers.add_parser('unassign', help='Unassign route from person')
    unassign.add_argument('person_id')
    unassign.add_argument('route_id')

    for name, help_text in [
        ('begin-registration', 'Suspend detection while recording a route'),
        ('end-registration', 'Resume detection after recording'),
        ('dismiss-alarm', 'Silence the alarm for a person'),
    ]:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('person_id')

    # Simple commands (no arguments)
    subparsers.add_parser('list-routes', help='List registered routes')
    subparsers.add_parser('list-sessions', help='List tracked sessions')

    location = subparsers.add_parser('send-location', help='Publish a location sample')
    location.add_argument('person_id')
    location.add_argument('latitude', type=float)
    location.add_argument('longitude', type=float)
    location.add_argument('--heading', type=float, default=0.0)
    location.add_argument('--timestamp', type=int, help='Epoch ms (default: now)')
    location.add_argument(
        '--topic-template',
        default='routewatch/data/locations/{person_id}',
        help='Location topic template'
    )

    # Parse arguments
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Execute command
    try:
        if args.command == 'register-route':
            config = load_yaml_config(args.config)
            command = build_register_command(config, args.route_id)
            send_command(command, args.service_id, args.broker, args.port)

        elif args.command == 'remove-route':
            command = {
                'command': 'remove_route',
                'route_id': args.route_id
            }
            send_command(command, args.service_id, args.broker, args.port)

        elif args.command in ['assign', 'unassign']:
            command = {
                'command': f'{args.command}_route',
                'person_id': args.person_id,
                'route_id': args.route_id
            }
            send_command(command, args.service_id, args.broker, args.port)

        elif args.command in ['begin-registration', 'end-registration', 'dismiss-alarm']:
            command = {
                'command': args.command.replace('-', '_'),
                'person_id': args.person_id
            }
            send_command(command, args.service_id, args.broker, args.port)

        elif args.command in ['list-routes', 'list-sessions']:
            command = {'command': args.command.replace('-', '_')}
            send_command(command, args.service_id, args.broker, args.port)

        elif args.command == 'send-location':
            payload = build_location_payload(
                args.latitude, args.longitude, args.heading, args.timestamp
            )
            topic = args.topic_template.format(person_id=args.person_id)
            client = MQTTCommandClient(broker=args.broker, port=args.port)
            client.publish_json(topic, payload, qos=0)
            print(f"✅ Location sent to {topic}")

    except Exception as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()

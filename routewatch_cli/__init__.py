"""
RouteWatch CLI - Command-line interface for DeviationTrackingService control.

This package provides a CLI for sending MQTT commands to the tracking
service without manually writing JSON, plus a helper to inject location
samples while testing.

Usage:
    routewatch-cli register-route config/commands/register_park_loop.yaml
    routewatch-cli assign grandma park_loop
    routewatch-cli begin-registration grandma
    routewatch-cli dismiss-alarm grandma
    routewatch-cli list-sessions
"""

__version__ = "1.0.0"

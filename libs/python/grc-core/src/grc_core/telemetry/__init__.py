"""OpenTelemetry integration for the approval engine."""

from grc_core.telemetry.setup import init_telemetry, shutdown_telemetry

__all__ = ["init_telemetry", "shutdown_telemetry"]

"""
Uptime Monitor Services

- Status Evaluator - Telemetry window to RUNNING/DOWN with hysteresis
- Downtime Ledger - Day-scoped downtime records per machine
- Boundary Splitter - Splits open downtimes at customer-local midnight
- Monitor Service - Schedules both ticks and serves HTTP endpoints
"""

from .engine import UptimeEngine

__all__ = ["UptimeEngine"]

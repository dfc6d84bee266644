"""
Machine Uptime Monitor

Derives RUNNING/DOWN status per machine and customer-local day from
production counter telemetry, and keeps a day-scoped downtime ledger.
"""

__version__ = "1.0.0"

"""
Monitor Service

Responsibilities:
- Run the evaluation tick and the boundary tick (single-flight each)
- Serve /health, /evaluate, /split and /availability
- Graceful shutdown on SIGTERM/SIGINT
"""

from .service import MonitorService, run_service

__all__ = ["MonitorService", "run_service"]

"""
Status Evaluation

Responsibilities:
- Query the recent telemetry window per machine
- Apply the grace-period rules (RUNNING/DOWN)
- Persist one status record per device and local day
- Dispatch start/end downtime calls to the ledger
"""

from .evaluator import (
    StatusEvaluator,
    EvaluationSummary,
    MachineEvaluation,
    StatusDecision,
    decide_status,
    detect_production,
)

__all__ = [
    "StatusEvaluator",
    "EvaluationSummary",
    "MachineEvaluation",
    "StatusDecision",
    "decide_status",
    "detect_production",
]

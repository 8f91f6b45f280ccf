"""
Core Trading Module.

Provides:
- Event bus for session, fill and risk events
- Risk engine for stop-loss and reversal detection
- Reconciliation engine that owns the trading state
- Performance snapshots and trade analysis
- Drift detection and correction
- Grid controller for trading cycle coordination
"""

from .events import (
    EventBus,
    Event,
    EventType,
    EventSeverity,
    EventSubscriber,
    LoggingSubscriber,
    CallbackSubscriber,
)
from .risk_engine import (
    RiskEngine,
    RiskState,
    StopLossResult,
)
from .performance import (
    PerformanceMonitor,
    PerformanceSnapshot,
    build_snapshot,
)
from .reconciliation import (
    ReconciliationEngine,
    ReconciliationResult,
    ExecutionResult,
    StateInconsistencyError,
)
from .drift import (
    DriftCorrector,
    DriftReport,
)
from .controller import (
    GridController,
    ControllerState,
    CycleReport,
)

__all__ = [
    # Events
    "EventBus",
    "Event",
    "EventType",
    "EventSeverity",
    "EventSubscriber",
    "LoggingSubscriber",
    "CallbackSubscriber",
    # Risk
    "RiskEngine",
    "RiskState",
    "StopLossResult",
    # Performance
    "PerformanceMonitor",
    "PerformanceSnapshot",
    "build_snapshot",
    # Reconciliation
    "ReconciliationEngine",
    "ReconciliationResult",
    "ExecutionResult",
    "StateInconsistencyError",
    # Drift
    "DriftCorrector",
    "DriftReport",
    # Controller
    "GridController",
    "ControllerState",
    "CycleReport",
]

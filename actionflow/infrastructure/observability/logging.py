import structlog
import logging
import sys
from typing import Dict, Any, Optional
from datetime import datetime
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "actionflow"
) -> None:
    """Setup structured logging configuration"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add turn context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.utcnow().isoformat()

    context = structlog.contextvars.get_contextvars()
    for key in ("trace_id", "session_id", "node"):
        if key in context and key not in event_dict:
            event_dict[key] = context[key]

    return event_dict


class ActionLogger:
    """Specialized logger for action flow events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_intent(
        self,
        session_id: str,
        intent: str,
        confidence: float,
        fast_path: bool = False,
        has_pending_action: bool = False
    ):
        """Log an intent classification"""

        self.logger.info(
            "intent_classified",
            session_id=session_id,
            intent=intent,
            confidence=confidence,
            fast_path=fast_path,
            has_pending_action=has_pending_action
        )

    def log_transition(
        self,
        session_id: str,
        action_id: str,
        from_state: Optional[str],
        to_state: str,
        missing_fields: Optional[list] = None
    ):
        """Log a pending action state transition"""

        self.logger.info(
            "pending_action_transition",
            session_id=session_id,
            action_id=action_id,
            from_state=from_state or "none",
            to_state=to_state,
            missing_fields=missing_fields or []
        )

    def log_remote_call(
        self,
        node: str,
        executor: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ):
        """Log a call to a peer node"""

        self.logger.info(
            "remote_call",
            node=node,
            executor=executor,
            duration_ms=duration_ms,
            success=success,
            error=error
        )

    def log_execution(
        self,
        executor: str,
        session_id: Optional[str],
        duration_ms: Optional[float] = None,
        success: bool = True,
        node: Optional[str] = None,
        error: Optional[str] = None
    ):
        """Log an executed action"""

        self.logger.info(
            "action_executed",
            executor=executor,
            session_id=session_id,
            duration_ms=duration_ms,
            success=success,
            node=node,
            error=error
        )


action_logger = ActionLogger("actionflow")


class MetricsCollector:
    """Collect collaborator latencies and counters"""

    def __init__(self):
        self.metrics: Dict[str, Any] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Record operation latency"""

        key = f"latency.{operation}"
        if key not in self.metrics:
            self.metrics[key] = {
                "count": 0,
                "sum": 0,
                "min": float('inf'),
                "max": 0
            }

        self.metrics[key]["count"] += 1
        self.metrics[key]["sum"] += duration_ms
        self.metrics[key]["min"] = min(self.metrics[key]["min"], duration_ms)
        self.metrics[key]["max"] = max(self.metrics[key]["max"], duration_ms)

        action_logger.logger.debug(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=duration_ms,
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter metric"""

        if name not in self.metrics:
            self.metrics[name] = 0
        self.metrics[name] += value

        action_logger.logger.debug(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics"""

        summary = {}
        for key, value in self.metrics.items():
            if isinstance(value, dict) and "count" in value:
                summary[key] = {
                    "count": value["count"],
                    "avg": value["sum"] / value["count"] if value["count"] > 0 else 0,
                    "min": value["min"] if value["min"] != float('inf') else 0,
                    "max": value["max"]
                }
            else:
                summary[key] = value

        return summary


metrics = MetricsCollector()

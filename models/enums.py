"""
Centralized Enum definitions for the optimization engine.
"""

from enum import Enum


class ActionType(str, Enum):
    """Kinds of decisions recorded in a cadence's action log"""

    PRICE_INCREASE = "price-increase"
    PRICE_DECREASE = "price-decrease"
    PRICE_UP_ELASTICITY = "price-up-elasticity"
    PRICE_DOWN_ELASTICITY = "price-down-elasticity"
    START_EXPERIMENT = "start-experiment"
    CONCLUDE_EXPERIMENT = "conclude-experiment"
    APPLY_WINNER = "apply-winner"
    CANCEL_EXPERIMENT = "cancel-experiment"
    IMPROVE_CONTENT = "improve-content"
    REFRESH_CONTENT = "refresh-content"
    APPLY_PROMOTION = "apply-promotion"
    REMOVE_PROMOTION = "remove-promotion"
    SCHEDULE_PROMOTION = "schedule-promotion"
    CANCEL_PROMOTION = "cancel-promotion"


class ExperimentStatus(str, Enum):
    """Lifecycle of a per-listing A/B content experiment"""

    IDLE = "idle"  # Variants supplied, nothing running
    RUNNING = "running"  # One variant live, conclusion pending
    CONCLUDED = "concluded"  # Winner applied (terminal)
    CANCELLED = "cancelled"  # Aborted externally (terminal)


class ConclusionStatus(str, Enum):
    """State of a durable experiment conclusion record"""

    PENDING = "pending"
    FAILED = "failed"  # Stuck, needs cancel()


class PromotionReason(str, Enum):
    """Why a promotion window was scheduled"""

    FLASH = "flash"
    CALENDAR_EVENT = "calendar_event"


class NotificationType(str, Enum):
    """Notification categories understood by the notifier"""

    INFO = "info"
    REPORT = "report"
    WARNING = "warning"
    ERROR = "error"


class Cadence(str, Enum):
    """Named recurring invocations of the pipeline"""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    PROMOTIONS = "promotions"

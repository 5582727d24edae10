"""Enumerations for configflow records."""

from enum import Enum


class ChangeKind(str, Enum):
    """Kind of filesystem change reported for a configuration file."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class Priority(str, Enum):
    """Suggestion priority, ordered by ``rank``."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


class Category(str, Enum):
    """What a suggestion is trying to improve."""

    PERFORMANCE = "performance"
    MEMORY = "memory"
    STABILITY = "stability"
    SECURITY = "security"
    RESOURCE = "resource"


class RiskLevel(str, Enum):
    """Risk of applying a suggestion, ordered by ``rank``."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


class TuningStatus(str, Enum):
    """Lifecycle state of an auto-tuning session."""

    PENDING = "pending"
    TESTING = "testing"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    AWAITING_APPROVAL = "awaiting_approval"

    @property
    def is_terminal(self) -> bool:
        return self in (
            TuningStatus.SUCCESSFUL,
            TuningStatus.FAILED,
            TuningStatus.ROLLED_BACK,
        )


class VirtualKind(str, Enum):
    """Non-file suggestion targets. Changes to these are logged, never written."""

    SYSTEM = "system"
    ALGORITHMIC = "algorithmic_optimization"
    CONFIGURATION = "configuration"


class DocumentFormat(str, Enum):
    """How a configuration file can be read and mutated."""

    JSON = "json"
    YAML = "yaml"
    OPAQUE = "opaque"


_PRIORITY_RANK = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.CRITICAL: 4,
}

_RISK_RANK = {
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.HIGH: 3,
}

"""Problem reports and the monitor interface shared by problem daemons."""

from __future__ import annotations

import queue
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional


class Severity(str, Enum):
    """Severity of a problem event."""

    INFO = "info"
    WARN = "warn"


class ConditionStatus(str, Enum):
    """Whether a node is in a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ProblemType(str, Enum):
    """Whether a problem is temporary (an event) or permanent (a condition)."""

    TEMP = "temporary"
    PERM = "permanent"


@dataclass
class Condition:
    """A permanent node condition."""

    type: str
    status: ConditionStatus
    transition: datetime
    reason: str = ""
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "status": ConditionStatus(self.status).value,
            "transition": self.transition.isoformat(),
            "reason": self.reason,
            "message": self.message,
        }


@dataclass
class Event:
    """A temporary node problem event."""

    severity: Severity
    timestamp: datetime
    reason: str = ""
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "severity": Severity(self.severity).value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "message": self.message,
        }


@dataclass
class Status:
    """What a problem daemon reports: events oldest first, and current conditions."""

    source: str
    events: list = field(default_factory=list)
    conditions: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "events": [event.to_dict() for event in self.events],
            "conditions": [condition.to_dict() for condition in self.conditions],
        }


class Monitor(ABC):
    """Watches the system and reports problems and metrics."""

    @abstractmethod
    def start(self) -> Optional[queue.Queue]:
        """Start monitoring; return a queue of Status reports, or None for metrics only."""

    @abstractmethod
    def stop(self) -> None:
        """Stop monitoring."""


@dataclass(frozen=True)
class ProblemDaemonHandler:
    """How to create one type of problem daemon from a config path."""

    create_problem_daemon_or_die: Callable[[str], Monitor]
    cmd_option_description: str = ""
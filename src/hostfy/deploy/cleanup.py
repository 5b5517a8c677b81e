import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, List

from hostfy.errors import HostfyError

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    FATAL = "fatal"
    ADVISORY = "advisory"


@dataclass
class CleanupAction:
    description: str
    run: Callable[[], Any]
    severity: Severity = Severity.ADVISORY


@dataclass
class CleanupReport:
    completed: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.warnings

    def extend(self, other: "CleanupReport"):
        self.completed.extend(other.completed)
        self.warnings.extend(other.warnings)


def run_cleanup(actions: Iterable[CleanupAction]) -> CleanupReport:
    """Run every action in order.

    A failing FATAL action is re-raised immediately; failing ADVISORY actions
    are recorded in the report and the remaining actions still run.
    """
    report = CleanupReport()
    for action in actions:
        try:
            action.run()
        except (HostfyError, OSError) as e:
            if action.severity is Severity.FATAL:
                raise
            logger.warning("%s failed: %s", action.description, e)
            report.warnings.append(f"{action.description}: {e}")
        else:
            report.completed.append(action.description)
    return report

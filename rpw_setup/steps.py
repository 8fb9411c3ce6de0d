"""Step status tracking shared by the provisioning workflows."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from rpw_setup.errors import ConfigWarning, ProvisioningError, SetupError

logger = logging.getLogger(__name__)

# (status, message) returned by every step function
StepOutcome = Tuple[str, str]


@dataclass
class StepResult:
    name: str
    status: str  # success | skipped | warning | failed
    message: str = ""


@dataclass
class ProvisionResult:
    success: bool = True
    steps: List[StepResult] = field(default_factory=list)
    summary: List[str] = field(default_factory=list)

    def record(self, name: str, status: str, message: str = "") -> StepResult:
        step = StepResult(name, status, message)
        self.steps.append(step)
        if status == "failed":
            self.success = False
        return step

    def step(self, name: str) -> Optional[StepResult]:
        return next((s for s in self.steps if s.name == name), None)


class StepRunner:
    """
    Base for workflows made of named steps.

    ConfigWarning is downgraded to a recorded warning; any other SetupError is
    recorded as a failure and re-raised, and OSError or UnicodeError is
    re-raised as ProvisioningError.
    """

    def __init__(self) -> None:
        self.result = ProvisionResult()

    def _run_step(self, name: str, func: Callable[..., StepOutcome], *args: Any) -> StepOutcome:
        label = name.replace("_", " ").capitalize()
        try:
            status, message = func(*args)
        except ConfigWarning as e:
            logger.warning(str(e))
            self.result.record(name, "warning", str(e))
            return "warning", str(e)
        except SetupError as e:
            logger.error(f"{label} failed: {e}")
            self.result.record(name, "failed", str(e))
            raise
        except (OSError, UnicodeError) as e:
            logger.error(f"{label} failed: {e}")
            self.result.record(name, "failed", str(e))
            raise ProvisioningError(str(e)) from e
        self.result.record(name, status, message)
        return status, message

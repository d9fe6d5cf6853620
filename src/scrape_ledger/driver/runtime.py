"""
Driver runtime: the shared state-machine loop for institution scripts.

A driver script classifies the current page into a named state and handles
it; every handler returns a progress name. The runtime owns the loop:

    step += 1 -> read URL -> classify -> dispatch -> record progress
    -> watchdog check -> stop if done -> human-pace delay

Structural failures (no progress, unclassifiable page, site error, step
ceiling, cancellation) abort the run with a DriverError carrying the step
history. Conditions a script can wait out (fields not rendered yet, spinners)
are expressed by returning a progress name and letting the loop re-step.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Optional

from ..errors import DriverError, ScrapeLedgerError, StepLimitError, UnclassifiedStateError
from ..schemas.documents import Document
from .capabilities import DriverContext

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 200
DEFAULT_STEP_DELAY_MS = (800, 1400)


@dataclass
class StepResult:
    """Outcome of one handler call."""

    progress_name: str
    done: bool = False


Handler = Callable[[DriverContext], StepResult]


class DriverScript(ABC):
    """
    Per-institution driver.

    Subclasses set `name` and `secrets` (declared secret names per domain),
    implement classify() and handlers(), and may implement recover() for
    pages that match no state.
    """

    name: str = ""
    secrets: dict[str, list[str]] = {}

    @abstractmethod
    def classify(self, ctx: DriverContext) -> Optional[str]:
        """Name of the current page state, or None if unrecognized."""

    @abstractmethod
    def handlers(self) -> dict[str, Handler]:
        """Handler per state name."""

    def recover(self, ctx: DriverContext, url: str) -> Optional[StepResult]:
        """Handle an unclassified page (e.g. navigate back to login). None = give up."""
        return None


@dataclass
class RunReport:
    """Summary of a completed driver run."""

    steps: int
    progress_names: list[str]
    reported_values: dict[str, str] = field(default_factory=dict)
    saved_documents: list[Document] = field(default_factory=list)


class DriverRuntime:
    """Runs a DriverScript against a DriverContext until it reports done."""

    def __init__(
        self,
        script: DriverScript,
        ctx: DriverContext,
        max_steps: int = DEFAULT_MAX_STEPS,
        step_delay_ms: tuple[int, int] = DEFAULT_STEP_DELAY_MS,
    ):
        self.script = script
        self.ctx = ctx
        self.max_steps = max_steps
        self.step_delay_ms = step_delay_ms

    def run(self) -> RunReport:
        """
        Execute the state machine.

        Raises:
            DriverError: Structural failure (subclass names the cause)
        """
        watchdog = self.ctx.watchdog
        handlers = self.script.handlers()
        step = 0
        logger.info("Driver %s starting for %s", self.script.name, self.ctx.login)

        try:
            while True:
                self.ctx.session.check_cancelled()
                step += 1
                if step > self.max_steps:
                    raise StepLimitError(
                        f"step limit of {self.max_steps} reached", watchdog.history
                    )

                url = self.ctx.page.url()
                logger.info("Step %d: URL=%s", step, url)
                state, result = self._step(handlers, url)

                watchdog.record(step, url, state, result.progress_name)
                logger.debug("Step %d: [%s] %s", step, state, result.progress_name)
                watchdog.check(step)

                if result.done:
                    break

                self.ctx.human_pace(*self.step_delay_ms)
        except DriverError as e:
            if not e.history:
                e.history = list(watchdog.history)
            logger.error("Driver %s failed at step %d: %s", self.script.name, step, e.message)
            raise
        except ScrapeLedgerError:
            raise
        except Exception as e:
            raise DriverError(
                f"driver {self.script.name} raised at step {step}: {e}", watchdog.history
            ) from e

        logger.info("Driver %s finished after %d steps", self.script.name, step)
        return RunReport(
            steps=step,
            progress_names=list(watchdog.progress_names),
            reported_values=dict(self.ctx.reported_values),
            saved_documents=list(self.ctx.saved_documents),
        )

    def _step(self, handlers: dict[str, Handler], url: str) -> tuple[Optional[str], StepResult]:
        state = self.script.classify(self.ctx)
        if state is None:
            result = self.script.recover(self.ctx, url)
            if result is None:
                raise UnclassifiedStateError(
                    f"unable to classify page state at {url}", self.ctx.watchdog.history
                )
            return None, self._checked(result)

        handler = handlers.get(state)
        if handler is None:
            raise UnclassifiedStateError(
                f"no handler for state '{state}' at {url}", self.ctx.watchdog.history
            )
        return state, self._checked(handler(self.ctx))

    @staticmethod
    def _checked(result: object) -> StepResult:
        if not isinstance(result, StepResult) or not result.progress_name:
            raise DriverError(f"handler must return a StepResult with a progress name: {result!r}")
        return result

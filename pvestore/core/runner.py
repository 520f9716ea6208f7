"""Command execution with simulation support.

Every mutating step goes through CommandRunner.run() or CommandRunner.apply()
so that --whatif replaces execution with a "Would run" message. Steps are
either REQUIRED (failure raises StepError) or ADVISORY (failure is logged as
a warning and returned as a failed StepResult).
"""
import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from pvestore.core.errors import StepError
from pvestore.core.logger import (
    get_logger,
    step_failed,
    step_simulated,
    step_started,
    step_succeeded,
)

logger = get_logger(__name__)


class StepKind(Enum):
    REQUIRED = "required"
    ADVISORY = "advisory"


@dataclass
class CommandOutput:
    """Result of a read-only query."""
    command: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class StepResult:
    """Outcome of one mutating step."""
    description: str
    command: List[str] = field(default_factory=list)
    ok: bool = True
    simulated: bool = False
    kind: StepKind = StepKind.REQUIRED
    returncode: int = 0
    stderr: str = ""


def format_command(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(a)) for a in argv)


class CommandRunner:
    """Runs host commands; substitutes 'Would run' messages in simulation mode."""

    def __init__(self, whatif: bool = False, executor: Callable = subprocess.run):
        self.whatif = whatif
        self._executor = executor
        self.history: List[StepResult] = []

    def query(self, argv: Sequence[str], input_text: Optional[str] = None) -> CommandOutput:
        """Run a read-only command; always executes, even in simulation mode."""
        argv = [str(a) for a in argv]
        try:
            result = self._executor(argv, capture_output=True, text=True, input=input_text)
        except FileNotFoundError:
            return CommandOutput(argv, 127, "", f"{argv[0]}: command not found")
        except OSError as e:
            return CommandOutput(argv, 126, "", str(e))
        return CommandOutput(argv, result.returncode, result.stdout or "", result.stderr or "")

    def run(
        self,
        description: str,
        argv: Sequence[str],
        kind: StepKind = StepKind.REQUIRED,
        remedy: Optional[str] = None,
    ) -> StepResult:
        """Run a mutating command.

        Raises:
            StepError: If a REQUIRED step fails
        """
        argv = [str(a) for a in argv]
        step_started(logger, description)
        if self.whatif:
            step_simulated(logger, "run", format_command(argv))
            return self._record(StepResult(description, argv, simulated=True, kind=kind))

        output = self.query(argv)
        if output.ok:
            step_succeeded(logger, description)
            return self._record(StepResult(description, argv, kind=kind))

        step = StepResult(description, argv, ok=False, kind=kind,
                          returncode=output.returncode, stderr=output.stderr)
        self._record(step)
        if kind is StepKind.ADVISORY:
            step_failed(logger, description, best_effort=True, detail=output.stderr.strip())
            return step
        step_failed(logger, description)
        raise StepError(description, argv, output.returncode, output.stderr, remedy=remedy)

    def apply(
        self,
        description: str,
        func: Callable[[], None],
        kind: StepKind = StepKind.REQUIRED,
    ) -> StepResult:
        """Run an in-process mutation (file rewrite, directory removal) as a step.

        Raises:
            StepError: If a REQUIRED mutation raises OSError
        """
        step_started(logger, description)
        if self.whatif:
            step_simulated(logger, "apply", description)
            return self._record(StepResult(description, simulated=True, kind=kind))
        try:
            func()
        except OSError as e:
            step = self._record(StepResult(description, ok=False, kind=kind, stderr=str(e)))
            if kind is StepKind.ADVISORY:
                step_failed(logger, description, best_effort=True, detail=str(e))
                return step
            step_failed(logger, description)
            raise StepError(description, stderr=str(e))
        step_succeeded(logger, description)
        return self._record(StepResult(description, kind=kind))

    @staticmethod
    def which(command: str) -> bool:
        return shutil.which(command) is not None

    def _record(self, step: StepResult) -> StepResult:
        self.history.append(step)
        return step

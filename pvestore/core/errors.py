"""Error taxonomy for pvestore operations."""
from typing import Optional, Sequence


class PvestoreError(Exception):
    """Base class for every error pvestore reports to the operator."""


class ConfigurationError(PvestoreError):
    """Invalid host setup or run parameters, detected before any mutation."""


class SafetyError(PvestoreError):
    """A safety guard refused to let a destructive step run."""


class LabelExhaustedError(PvestoreError):
    """All 26 letters for a kind/node pair are in use."""


class LockError(PvestoreError):
    """Raised when unable to acquire the operation lock."""


class ParseError(PvestoreError):
    """Command output or a persisted file did not have the expected shape."""

    def __init__(self, source: str, detail: str):
        self.source = source
        self.detail = detail
        super().__init__(f"Cannot parse {source}: {detail}")


class StepError(PvestoreError):
    """A required step failed.

    Attributes:
        description: Human readable step description
        command: Command that was executed (if any)
        returncode: Exit code of the command
        stderr: Captured error output
        remedy: Command the operator can run to recover (optional)
    """

    def __init__(
        self,
        description: str,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
        remedy: Optional[str] = None,
    ):
        self.description = description
        self.command = list(command) if command else None
        self.returncode = returncode
        self.stderr = stderr.strip() if stderr else ""
        self.remedy = remedy
        super().__init__(self._format())

    def _format(self) -> str:
        message = f"Failed: {self.description}"
        if self.command:
            message += f"\nCommand: {' '.join(self.command)}"
        if self.returncode is not None:
            message += f" (rc={self.returncode})"
        if self.stderr:
            message += f"\n{self.stderr}"
        if self.remedy:
            message += f"\nTo retry run: {self.remedy}"
        return message


class ThinPoolTooSmallError(StepError):
    """Volume group is below the minimum size for thin provisioning."""

    def __init__(self, vg_name: str, vg_size_bytes: int, minimum_bytes: int):
        self.vg_name = vg_name
        self.vg_size_bytes = vg_size_bytes
        self.minimum_bytes = minimum_bytes
        super().__init__(
            f"Creating thin pool in {vg_name}: volume group is "
            f"{vg_size_bytes // (1024 * 1024)} MiB, minimum size for thin provisioning is "
            f"{minimum_bytes // (1024 * 1024)} MiB"
        )

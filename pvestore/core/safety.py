"""Safety gate shared by provisioning, deprovisioning and rename.

Destructive runs only proceed when one of these holds:
- simulation mode (--whatif): the plan is printed, nothing is mutated
- force mode (--force): the prompt is skipped
- the operator types the confirmation literal exactly
"""
from typing import Callable, Optional

import typer

from pvestore.core.errors import SafetyError
from pvestore.core.logger import get_logger

logger = get_logger(__name__)

CONFIRM_LITERAL = "DESTROY"


def _default_prompt(message: str) -> str:
    return typer.prompt(message, default="", show_default=False)


class SafetyGate:
    """Decides whether a destructive run may continue."""

    def __init__(self, whatif: bool = False, force: bool = False,
                 prompt: Optional[Callable[[str], str]] = None):
        self.whatif = whatif
        self.force = force
        self._prompt = prompt or _default_prompt

    def confirm(self) -> bool:
        """Return True to continue, False if the operator aborted."""
        if self.whatif:
            logger.warning("Simulation mode enabled: no changes will be made.")
            return True

        if self.force:
            logger.warning("Force mode enabled: skipping confirmation.")
            return True

        answer = self._prompt(f"Type {CONFIRM_LITERAL} to continue. Any other input aborts")
        if (answer or "").strip() != CONFIRM_LITERAL:
            logger.warning("Aborted by user.")
            return False
        return True

    @staticmethod
    def refuse_system_disk(device: str, system_disk: str, what: str = "Filter device"):
        """Raise if device is (or lives on) the system disk.

        Raises:
            SafetyError: Always when device resolves to the system disk
        """
        if device == system_disk:
            raise SafetyError(
                f"{what} {device} is the system disk. Refusing to operate."
            )

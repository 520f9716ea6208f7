"""Deterministic storage label allocation."""
from typing import Iterable, Set

from pvestore.core.errors import LabelExhaustedError
from pvestore.core.logger import get_logger
from pvestore.models.label import LETTERS, LabelKind, StorageLabel
from pvestore.services.base import HostServices

logger = get_logger(__name__)


class LabelAllocator:
    """Hands out KIND-<digit><letter> names, lowest free letter first."""

    def __init__(self, node_digit: str):
        self.node_digit = node_digit
        self._reserved: Set[str] = set()

    def next_label(self, kind: LabelKind, existing: Iterable[str]) -> StorageLabel:
        """Return the first label of kind not present in existing.

        Labels handed out earlier by this allocator count as taken, so a
        simulated run plans distinct names for each disk.

        Raises:
            LabelExhaustedError: If A-Z are all taken
        """
        taken = set(existing) | self._reserved
        for letter in LETTERS:
            label = StorageLabel(kind, self.node_digit, letter)
            if str(label) not in taken:
                self._reserved.add(str(label))
                logger.debug(f"Allocated label {label}")
                return label
        raise LabelExhaustedError(
            f"No free {kind.value} label on node {self.node_digit}: "
            f"{kind.value}-{self.node_digit}A..Z are all in use"
        )

    def reserve(self, label: StorageLabel) -> None:
        self._reserved.add(str(label))


def existing_names(host: HostServices) -> Set[str]:
    """Names already in use: partition labels, volume group names and registry IDs."""
    names = set(host.inspector.existing_labels())
    names.update(vg.name for vg in host.volumes.list_volume_groups())
    names.update(unit.id for unit in host.registry.units())
    return names

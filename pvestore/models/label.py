"""Storage label naming scheme."""
import re
from dataclasses import dataclass
from enum import Enum

LABEL_PATTERN = re.compile(r"^(HDD|SSD|NFS)-([0-9])([A-Z])$")

# Anything shaped like a storage name is treated as one by --only filters,
# even if its kind is not one we create.
NAME_FILTER_PATTERN = re.compile(r"^[a-zA-Z]+-[0-9]+[A-Z]$")

LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class LabelKind(Enum):
    """Label prefix by media type."""
    HDD = "HDD"
    SSD = "SSD"
    NFS = "NFS"


@dataclass(frozen=True)
class StorageLabel:
    """A KIND-<digit><letter> name such as HDD-2C."""
    kind: LabelKind
    node_digit: str
    letter: str

    def __post_init__(self):
        if not (len(self.node_digit) == 1 and self.node_digit.isdigit()):
            raise ValueError(f"Node digit must be a single digit, got '{self.node_digit}'")
        if self.letter not in LETTERS:
            raise ValueError(f"Label letter must be A-Z, got '{self.letter}'")

    def __str__(self) -> str:
        return f"{self.kind.value}-{self.node_digit}{self.letter}"

    @classmethod
    def parse(cls, value: str) -> "StorageLabel":
        match = LABEL_PATTERN.match(value or "")
        if not match:
            raise ValueError(f"'{value}' is not a storage name (expected e.g. HDD-2A)")
        kind, digit, letter = match.groups()
        return cls(LabelKind(kind), digit, letter)

    @staticmethod
    def is_label(value: str) -> bool:
        return bool(LABEL_PATTERN.match(value or ""))

    def matches(self, kind: LabelKind, node_digit: str) -> bool:
        return self.kind is kind and self.node_digit == node_digit

    @property
    def thin_pool_name(self) -> str:
        """Deterministic thin pool LV name for this label."""
        return f"thin{self.node_digit}{self.letter}"

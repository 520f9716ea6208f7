"""Parse and format /etc/fstab lines."""
from dataclasses import dataclass
from typing import List, Optional, Tuple

from pvestore.core.errors import ParseError


@dataclass
class FstabEntry:
    source: str         # UUID=..., server:/export
    mountpoint: str
    fstype: str = "auto"
    options: str = "defaults"
    dump: str = "0"
    passno: str = "0"

    def format(self) -> str:
        return f"{self.source} {self.mountpoint} {self.fstype} {self.options} {self.dump} {self.passno}"


def parse_fstab_line(line: str, lineno: int = 0) -> Optional[FstabEntry]:
    """Parse one line; comments and blank lines return None.

    Raises:
        ParseError: If a non-comment line has fewer than two fields
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    fields = stripped.split()
    if len(fields) < 2:
        raise ParseError("fstab", f"line {lineno}: expected at least source and mount point")
    defaults = ["auto", "defaults", "0", "0"]
    rest = fields[2:6] + defaults[len(fields[2:6]):]
    return FstabEntry(fields[0], fields[1], *rest)


def parse_fstab(text: str) -> List[Tuple[str, Optional[FstabEntry]]]:
    """Return (raw line, entry-or-None) pairs so files can be rewritten losslessly."""
    return [
        (line, parse_fstab_line(line, lineno))
        for lineno, line in enumerate(text.splitlines(), start=1)
    ]

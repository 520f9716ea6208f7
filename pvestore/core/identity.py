"""Host identity: the node digit that namespaces every storage label."""
import re
import socket
from dataclasses import dataclass
from typing import Optional

from pvestore.core.errors import ConfigurationError

_TRAILING_DIGIT = re.compile(r"^(?:.*\D)?(\d)$")


@dataclass(frozen=True)
class HostIdentity:
    node_name: str
    digit: str

    @classmethod
    def from_hostname(cls, hostname: str) -> "HostIdentity":
        """Build identity from a (possibly fully qualified) hostname.

        Raises:
            ConfigurationError: If the short name does not end in exactly one digit
        """
        short = (hostname or "").strip().split(".", 1)[0]
        match = _TRAILING_DIGIT.match(short)
        if not short or not match:
            raise ConfigurationError(
                f"Hostname '{short}' does not end in a single digit (expected pve1..pve9)."
            )
        return cls(node_name=short, digit=match.group(1))

    @classmethod
    def detect(cls, hostname: Optional[str] = None) -> "HostIdentity":
        return cls.from_hostname(hostname or socket.gethostname())

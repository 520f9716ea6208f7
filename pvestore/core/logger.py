"""Console and file logging for pvestore.

Every module logs through get_logger(__name__). Handlers live on the
"pvestore" logger only: a rich console handler from the first get_logger()
call, and a plain file handler once setup_file_logging() ran. Mutating steps
are narrated with fixed markers so the log file reads as a transcript:

    [*] Creating GPT partition on /dev/sdb
    [+] Creating GPT partition on /dev/sdb
    Would run: mkfs.ext4 -F -m 0 -T largefile4 -L HDD-3A /dev/sdb1
"""
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

console = Console()

ROOT_LOGGER = "pvestore"
LOG_FILE = Path("/var/log/pvestore/pvestore.log")
FALLBACK_LOG_FILE = Path("/tmp/pvestore.log")
FILE_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

STARTED = "[*]"
SUCCEEDED = "[+]"

_file_handler: Optional[logging.FileHandler] = None


def _root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        handler = RichHandler(console=console, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)
        if root.level == logging.NOTSET:
            root.setLevel(logging.INFO)
    return root


def _open(path: Path) -> logging.FileHandler:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(path)
    except PermissionError:
        FALLBACK_LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(FALLBACK_LOG_FILE)


def setup_file_logging(log_file: Optional[str] = None, verbose: bool = False) -> Path:
    """Send pvestore records to a log file as well as the console.

    The file is opened once per process; later calls only adjust the level.
    Falls back to /tmp/pvestore.log when /var/log/pvestore is not writable.

    Returns:
        Path of the file being written
    """
    global _file_handler
    root = _root()
    level = logging.DEBUG if verbose else logging.INFO
    if _file_handler is None:
        _file_handler = _open(Path(log_file) if log_file else LOG_FILE)
        _file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(_file_handler)
        root.setLevel(level)
        root.info(f"pvestore logging initialized: {_file_handler.baseFilename}")
    _file_handler.setLevel(level)
    root.setLevel(level)
    return Path(_file_handler.baseFilename)


def get_logger(name: str) -> logging.Logger:
    """Logger for a pvestore module; output goes through the pvestore handlers."""
    _root()
    return logging.getLogger(name)


def log_run_context(logger: logging.Logger, config) -> None:
    """First lines of every mutating run: node, mode and flags."""
    logger.info(config.context_line())
    if config.whatif:
        logger.warning("Simulation mode: commands are printed, not run")


# -----------------------------
#  Step narration
# -----------------------------
def step_started(logger: logging.Logger, description: str) -> None:
    logger.info(f"{STARTED} {description}")


def step_succeeded(logger: logging.Logger, description: str) -> None:
    logger.info(f"{SUCCEEDED} {description}")


def step_simulated(logger: logging.Logger, verb: str, what: str) -> None:
    logger.warning(f"Would {verb}: {what}")


def step_failed(logger: logging.Logger, description: str, best_effort: bool = False,
                detail: str = "") -> None:
    if best_effort:
        suffix = f": {detail}" if detail else ""
        logger.warning(f"Best-effort step failed (continuing): {description}{suffix}")
    else:
        logger.error(f"Failed: {description}")

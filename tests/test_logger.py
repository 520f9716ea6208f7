"""Tests for console/file logging and step narration."""
import logging
import subprocess

import pytest
from rich.logging import RichHandler

from fakes import make_config
from pvestore.core import logger as pvestore_logger
from pvestore.core.logger import get_logger, log_run_context, setup_file_logging
from pvestore.core.runner import CommandRunner, StepKind


@pytest.fixture
def log_file(tmp_path, monkeypatch):
    """A fresh file handler per test, detached again afterwards."""
    monkeypatch.setattr(pvestore_logger, "_file_handler", None)
    path = tmp_path / "pvestore.log"
    yield path
    handler = pvestore_logger._file_handler
    if handler is not None:
        logging.getLogger("pvestore").removeHandler(handler)
        handler.close()
    logging.getLogger("pvestore").setLevel(logging.INFO)


class TestFileLogging:
    def test_module_records_reach_file(self, log_file):
        assert setup_file_logging(log_file=str(log_file)) == log_file

        get_logger("pvestore.core.provisioner").info("Provisioning /dev/sdb")

        lines = log_file.read_text().splitlines()
        assert "pvestore logging initialized" in lines[0]
        assert lines[-1].endswith("| pvestore.core.provisioner | INFO | Provisioning /dev/sdb")

    def test_opened_once(self, log_file, tmp_path):
        setup_file_logging(log_file=str(log_file))

        assert setup_file_logging(log_file=str(tmp_path / "other.log"), verbose=True) == log_file
        assert logging.getLogger("pvestore").level == logging.DEBUG

    def test_single_console_handler(self):
        get_logger("pvestore.a")
        get_logger("pvestore.b")

        assert logging.getLogger("pvestore.a").handlers == []
        consoles = [h for h in logging.getLogger("pvestore").handlers if isinstance(h, RichHandler)]
        assert len(consoles) == 1


class TestNarration:
    def test_executed_step(self, caplog):
        runner = CommandRunner(executor=lambda argv, **kw: _completed(argv, 0))

        with caplog.at_level(logging.INFO, logger="pvestore"):
            runner.run("Creating GPT partition on /dev/sdb", ["sgdisk", "-n", "1:0:0", "/dev/sdb"])

        assert caplog.messages == ["[*] Creating GPT partition on /dev/sdb",
                                   "[+] Creating GPT partition on /dev/sdb"]

    def test_simulated_step(self, caplog):
        runner = CommandRunner(whatif=True)

        with caplog.at_level(logging.INFO, logger="pvestore"):
            runner.run("Creating GPT partition on /dev/sdb", ["sgdisk", "-c", "1:HDD 3A", "/dev/sdb"])
            runner.apply("Adding /mnt/disks/HDD-3A to /etc/fstab", lambda: None)

        assert "Would run: sgdisk -c '1:HDD 3A' /dev/sdb" in caplog.messages
        assert "Would apply: Adding /mnt/disks/HDD-3A to /etc/fstab" in caplog.messages

    def test_best_effort_failure(self, caplog):
        runner = CommandRunner(executor=lambda argv, **kw: _completed(argv, 1, "device busy"))

        with caplog.at_level(logging.INFO, logger="pvestore"):
            runner.run("Waiting for udev to settle", ["udevadm", "settle"], kind=StepKind.ADVISORY)

        assert caplog.records[-1].levelno == logging.WARNING
        assert caplog.messages[-1] == ("Best-effort step failed (continuing): "
                                       "Waiting for udev to settle: device busy")

    def test_run_context(self, caplog):
        with caplog.at_level(logging.INFO, logger="pvestore"):
            log_run_context(get_logger("pvestore.cli"), make_config(whatif=True))

        assert caplog.messages[0].startswith("Context: node=pve3 mode=provision whatif=1")
        assert "Simulation mode" in caplog.messages[1]


def _completed(argv, returncode, stderr=""):
    return subprocess.CompletedProcess(argv, returncode, "", stderr)

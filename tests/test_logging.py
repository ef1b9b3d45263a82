"""Tests for :mod:`aide.utils.logging`."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Iterator

import pytest

from aide.utils import logging as logging_utils


@pytest.fixture(autouse=True)
def _restore_root_logger(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    root = logging.getLogger()
    saved_level = root.level
    saved_httpx = logging.getLogger("httpx").level
    monkeypatch.setattr(logging_utils, "_file_handler", None)
    monkeypatch.setattr(logging_utils, "_console_handler", None)
    monkeypatch.delenv("AIDE_LOG_DIR", raising=False)
    yield
    for handler in (logging_utils._file_handler, logging_utils._console_handler):
        if handler is not None:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(saved_level)
    logging.getLogger("httpx").setLevel(saved_httpx)
    logging.captureWarnings(False)


def test_log_path_is_none_before_setup() -> None:
    assert logging_utils.get_log_path() is None


def test_env_directory_is_used(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AIDE_LOG_DIR", str(tmp_path / "env-logs"))

    path = logging_utils.setup_logging(console_level=None)

    assert path == tmp_path / "env-logs" / logging_utils.LOG_FILE_NAME
    assert logging_utils.get_log_path() == path


def test_explicit_directory_beats_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AIDE_LOG_DIR", str(tmp_path / "env-logs"))

    path = logging_utils.setup_logging(log_dir=tmp_path / "explicit", console_level=None)

    assert path.parent == tmp_path / "explicit"


def test_records_reach_the_file(tmp_path: Path) -> None:
    path = logging_utils.setup_logging(log_dir=tmp_path, console_level=None)

    logging.getLogger("aide.test").info("indexed %d files", 3)
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert "| INFO     | aide.test | indexed 3 files" in path.read_text(encoding="utf-8")


def test_second_setup_is_a_noop_without_force(tmp_path: Path) -> None:
    first = logging_utils.setup_logging(log_dir=tmp_path / "a", console_level=None)
    handlers = list(logging.getLogger().handlers)

    second = logging_utils.setup_logging(log_dir=tmp_path / "b", console_level=None)

    assert second == first
    assert logging.getLogger().handlers == handlers
    assert not (tmp_path / "b").exists()


def test_force_replaces_handlers(tmp_path: Path) -> None:
    logging_utils.setup_logging(log_dir=tmp_path / "a", console_level=None)

    path = logging_utils.setup_logging(log_dir=tmp_path / "b", console_level=logging.DEBUG, force=True)

    root = logging.getLogger()
    assert path.parent == tmp_path / "b"
    assert len(root.handlers) == 2
    console = [h for h in root.handlers if not isinstance(h, logging.FileHandler)]
    assert console[0].stream is sys.stderr
    assert root.level == logging.DEBUG


def test_noisy_loggers_are_quieted(tmp_path: Path) -> None:
    logging_utils.setup_logging(logging.DEBUG, log_dir=tmp_path, console_level=None)

    assert logging.getLogger("httpx").level == logging.WARNING


def test_set_file_level_leaves_console_alone(tmp_path: Path) -> None:
    logging_utils.setup_logging(logging.INFO, log_dir=tmp_path, console_level=logging.WARNING)

    logging_utils.set_file_level(logging.DEBUG)

    root = logging.getLogger()
    levels = {isinstance(h, logging.FileHandler): h.level for h in root.handlers}
    assert levels == {True: logging.DEBUG, False: logging.WARNING}
    assert root.level == logging.DEBUG


def test_set_file_level_before_setup_is_ignored() -> None:
    logging_utils.set_file_level(logging.DEBUG)

    assert logging_utils.get_log_path() is None

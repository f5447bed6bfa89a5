from __future__ import annotations

import logging

from dsoul.logging_utils import debug_enabled, format_fields, setup_logging


def test_format_fields() -> None:
    line = format_fields(action="fetch", gateway="ipfs.io", error="read timed out", size=None, secs=1.234)
    assert line == 'action=fetch gateway=ipfs.io error="read timed out" secs=1.23'


def test_debug_flag(monkeypatch) -> None:
    monkeypatch.setenv("DSOUL_DEBUG", "1")
    assert debug_enabled()
    monkeypatch.setenv("DSOUL_DEBUG", "0")
    assert not debug_enabled()


def test_setup_logging_is_idempotent(dsoul_home) -> None:
    logger = setup_logging()
    try:
        setup_logging()
        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].baseFilename == str(dsoul_home / "logs" / "dsoul.log")

        logging.getLogger("dsoul.skills.test").info("hello log")
        file_handlers[0].flush()
        assert "hello log" in (dsoul_home / "logs" / "dsoul.log").read_text(encoding="utf-8")
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

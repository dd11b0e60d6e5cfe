"""Tests for console and logging helpers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
from rich.logging import RichHandler

from context_compressor.core import utils

if TYPE_CHECKING:
    from collections.abc import Iterator

    from rich.console import Console


@pytest.fixture(autouse=True)
def _restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_rich_logging(mock_console: Console) -> None:
    utils.setup_rich_logging("debug", console=mock_console)
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0], RichHandler)
    assert logging.getLogger("httpx").level == logging.WARNING

    logging.getLogger("context_compressor.test").warning("store [bold]unavailable[/bold]")
    output = mock_console.file.getvalue()
    assert "store [bold]unavailable[/bold]" in output


def test_unknown_level_defaults_to_info(mock_console: Console) -> None:
    utils.setup_rich_logging("chatty", console=mock_console)
    assert logging.getLogger().level == logging.INFO


def test_print_output_panel_keeps_markup_literal(mock_console: Console) -> None:
    with patch.object(utils, "console", mock_console):
        utils.print_output_panel("[red]not markup[/red]", title="Context")
    output = mock_console.file.getvalue()
    assert "[red]not markup[/red]" in output
    assert "Context" in output


def test_print_error_message(mock_console: Console) -> None:
    with patch.object(utils, "err_console", mock_console):
        utils.print_error_message("Database missing", "Check the --db path.")
    output = mock_console.file.getvalue()
    assert "Database missing" in output
    assert "Check the --db path." in output

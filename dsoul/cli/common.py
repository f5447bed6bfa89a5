"""Shared CLI helpers: consoles, error handling, target folders"""

import asyncio
import functools
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, TypeVar

import click
from rich.console import Console
from rich.markup import escape

from dsoul.config import DsoulSettings
from dsoul.skills.errors import DsoulError, NotConfigured

logger = logging.getLogger(__name__)

console = Console(soft_wrap=True, highlight=False)
err_console = Console(stderr=True, soft_wrap=True, highlight=False)

T = TypeVar("T")


def run_async(coro: Awaitable[T]) -> T:
    """Run a coroutine from a (synchronous) click command"""
    return asyncio.run(coro)


def fail(message: str) -> None:
    """Print a single red line on stderr and exit 1"""
    err_console.print(f"[red]Error:[/red] {escape(message)}")
    click.get_current_context().exit(1)


def handle_errors(func: Callable) -> Callable:
    """Turn DsoulError into a one-line message and exit code 1"""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DsoulError as e:
            logger.debug(f"{func.__name__} failed: {type(e).__name__}: {e}")
            fail(str(e))

    return wrapper


def global_dir(settings: DsoulSettings) -> Path:
    folder = settings.global_skills_dir()
    if folder is None:
        raise NotConfigured("Skills folder not set. Run: dsoul config skills-folder <path>")
    return folder


def target_dirs(settings: DsoulSettings, use_global: bool, use_local: bool) -> List[Path]:
    """
    Folders inspected by update/upgrade

    -g: the global folder; --local: ./skills; neither: both (the global one
    only when configured).
    """
    if use_global and not use_local:
        return [global_dir(settings)]
    if use_local and not use_global:
        return [settings.local_skills_path()]

    dirs: List[Path] = []
    configured = settings.global_skills_dir()
    if configured is not None:
        dirs.append(configured)
    local = settings.local_skills_path()
    if not any(_same(local, d) for d in dirs):
        dirs.append(local)
    return dirs


def install_dir(settings: DsoulSettings, use_global: bool) -> Path:
    return global_dir(settings) if use_global else settings.local_skills_path()


def _same(a: Path, b: Path) -> bool:
    return a.expanduser().resolve() == b.expanduser().resolve()


def short(value: Optional[str], width: int = 16) -> str:
    if not value:
        return "-"
    return value if len(value) <= width else value[: width - 3] + "..."

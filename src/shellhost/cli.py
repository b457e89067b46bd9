from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import EngineConfig, load_config, save_config
from .engine import ShellEngine
from .errors import CommandTimeout, ShellHostError
from .history import HistoryStore
from .monitoring.metrics import print_metrics_summary
from .resolver import candidates_from_paths, resolve_shell

app = typer.Typer(no_args_is_help=True)

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """PTY shell sessions from the command line."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


@app.command()
def which() -> None:
    """Показать, какая оболочка будет использоваться."""
    cfg = load_config()
    candidates = candidates_from_paths(cfg.shell_candidates) if cfg.shell_candidates else None
    try:
        shell = resolve_shell(candidates, timeout=cfg.probe_timeout_sec)
    except ShellHostError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"{shell.path} [dim]({shell.kind.value})[/dim]")


async def _run_once(cfg: EngineConfig, command: str, timeout_ms: Optional[int], cwd: Optional[str], show_metrics: bool) -> int:
    async with ShellEngine(cfg) as engine:
        created = await engine.create_session(cwd=cwd)
        try:
            result = await engine.execute_command(created.session_id, command, timeout_ms)
        except CommandTimeout as e:
            console.print(f"[red]{e}[/red]")
            return 1
        console.print(result.output, markup=False, highlight=False)
        if show_metrics:
            print_metrics_summary(engine.get_metrics(), console)
    return 0


@app.command()
def run(
    command: str = typer.Argument(..., help="Command line to execute"),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms"),
    cwd: Optional[str] = typer.Option(None, "--cwd"),
    show_metrics: bool = typer.Option(False, "--metrics", help="Print metrics afterwards"),
) -> None:
    """Выполнить одну команду в новой сессии."""
    try:
        code = asyncio.run(_run_once(load_config(), command, timeout_ms, cwd, show_metrics))
    except ShellHostError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    raise typer.Exit(code=code)


async def _repl(cfg: EngineConfig, cwd: Optional[str]) -> None:
    async with ShellEngine(cfg) as engine:
        created = await engine.create_session(cwd=cwd)
        version = f" {engine.shell_version}" if engine.shell_version else ""
        console.print(
            f"[cyan]{engine.shell.name}{version}[/cyan] session {created.session_id} "
            f"(pid={created.pid}). :history, :metrics, :quit"
        )

        while True:
            try:
                line = await asyncio.to_thread(console.input, "[bold]> [/bold]")
            except (EOFError, KeyboardInterrupt):
                break

            if line.strip() in (":quit", ":q"):
                break
            if line.strip() == ":history":
                for cmd in engine.get_history(20):
                    console.print(cmd, markup=False, highlight=False)
                continue
            if line.strip() == ":metrics":
                print_metrics_summary(engine.get_metrics(), console)
                continue

            try:
                result = await engine.execute_command(created.session_id, line)
            except CommandTimeout as e:
                console.print(f"[yellow]{e}[/yellow]")
                continue
            except ShellHostError as e:
                console.print(f"[red]{e}[/red]")
                break
            console.print(result.output, markup=False, highlight=False)


@app.command()
def repl(cwd: Optional[str] = typer.Option(None, "--cwd")) -> None:
    """Интерактивная сессия."""
    try:
        asyncio.run(_repl(load_config(), cwd))
    except ShellHostError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)


@app.command("history")
def history_show(limit: int = typer.Option(20, "--limit", "-n")) -> None:
    """Последние команды (свежие сверху)."""
    cfg = load_config()
    store = HistoryStore(cfg.history_path, limit=cfg.history_limit)

    table = Table(title=f"History ({len(store)} entries)")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Command")
    for i, cmd in enumerate(store.list(limit), 1):
        table.add_row(str(i), cmd)
    console.print(table)


@app.command("history-clear")
def history_clear() -> None:
    """Очистить историю команд."""
    cfg = load_config()
    HistoryStore(cfg.history_path, limit=cfg.history_limit).clear()
    console.print("OK")


@app.command("config")
def config_set(
    history_path: Optional[str] = typer.Option(None, "--history-path"),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms"),
    grace_sec: Optional[float] = typer.Option(None, "--grace-sec"),
    execution_policy: Optional[str] = typer.Option(None, "--execution-policy"),
) -> None:
    """Сохранить/обновить конфиг."""
    cfg = load_config()
    data = cfg.model_dump()
    if history_path is not None:
        data["history_path"] = history_path
    if timeout_ms is not None:
        data["default_timeout_ms"] = timeout_ms
    if grace_sec is not None:
        data["close_grace_sec"] = grace_sec
    if execution_policy is not None:
        data["execution_policy"] = execution_policy

    save_config(EngineConfig(**data))
    console.print("OK")


@app.command()
def config_show() -> None:
    """Показать конфиг."""
    console.print(load_config().model_dump_json(indent=2), markup=False, highlight=False, soft_wrap=True)


if __name__ == "__main__":
    app()

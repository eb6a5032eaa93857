"""
CLI 命令模块 - wagate 的所有命令行命令定义。

本模块使用 Typer 框架定义 wagate 的 CLI 命令：
- onboard：生成默认配置文件
- gateway：启动网关（恢复会话 → 运行直到 Ctrl-C → 停止所有会话）
- sessions：持久化会话管理（列表、登出）
- status：查看配置与存储状态

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（表格等）
"""

import asyncio

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from wagate import __logo__, __version__

app = typer.Typer(
    name="wagate",
    help=f"{__logo__} wagate - Multi-session WhatsApp gateway",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    """打印版本号并退出。"""
    if value:
        console.print(f"{__logo__} wagate v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True
    ),
):
    """wagate CLI 根命令回调。"""
    pass


# ============================================================================
# Onboard
# ============================================================================


@app.command()
def onboard():
    """在 ~/.wagate/ 下生成默认配置文件 config.json。"""
    from wagate.config.loader import get_config_path, save_config
    from wagate.config.schema import Config

    config_path = get_config_path()
    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config())
    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print("\nNext steps:")
    console.print("  1. Point [cyan]bridges[/cyan] at your engine bridge processes")
    console.print("  2. Run: [cyan]wagate gateway[/cyan]")


# ============================================================================
# Gateway
# ============================================================================


@app.command()
def gateway(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    启动 wagate 网关。

    执行流程：
    1. 加载配置并创建 SessionManager
    2. boot()：清空媒体目录、恢复会话、启动预定义会话
    3. 持续运行直到 Ctrl-C
    4. shutdown()：停止所有会话（不改变持久化状态，下次启动会恢复）
    """
    from wagate.config.loader import load_config
    from wagate.sessions.manager import SessionManager

    if verbose:
        logger.enable("wagate")
    else:
        logger.disable("wagate")

    config = load_config()
    manager = SessionManager(config)

    console.print(f"{__logo__} Starting wagate gateway (engine: {config.engine})...")
    if config.sessions.restart_all:
        console.print("[green]✓[/green] Restoring persisted sessions")
    if config.sessions.start:
        console.print(f"[green]✓[/green] Sessions to start: {', '.join(config.sessions.start)}")
    if not config.webhook.url:
        console.print("[yellow]Warning: No global webhook configured[/yellow]")

    async def run():
        try:
            await manager.boot()
            for dto in await manager.get_sessions():
                console.print(f"  {dto.name}: {dto.status.value}")
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            console.print("\nShutting down...")
        finally:
            await manager.shutdown()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


# ============================================================================
# Sessions Commands
# ============================================================================


sessions_app = typer.Typer(help="Manage persisted sessions")
app.add_typer(sessions_app, name="sessions")


def _make_storage():
    from wagate.config.loader import load_config
    from wagate.sessions.storage import SessionStorage

    config = load_config()
    return SessionStorage(config.sessions_path, config.engine)


@sessions_app.command("list")
def sessions_list(
    all: bool = typer.Option(False, "--all", "-a", help="Include stopped sessions"),
):
    """
    列出持久化的会话。

    默认只显示最后状态不是 STOPPED 的会话（下次启动会被恢复），使用 --all 显示全部。
    """
    from wagate.structures import SessionStatus

    storage = _make_storage()

    async def collect():
        rows = []
        for name in await storage.get_all():
            status = await storage.config_repository.get_status(name)
            if not all and status == SessionStatus.STOPPED:
                continue
            config = await storage.config_repository.get(name)
            rows.append((name, status, config))
        return rows

    rows = asyncio.run(collect())
    if not rows:
        console.print("No sessions.")
        return

    table = Table(title=f"Sessions ({storage.engine})")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Webhooks")
    table.add_column("Proxy")

    for name, status, config in rows:
        webhooks = ", ".join(w.url for w in config.webhooks) if config else ""
        proxy = config.proxy.server if config and config.proxy else ""
        if status == SessionStatus.STOPPED:
            status_text = "[dim]STOPPED[/dim]"
        elif status == SessionStatus.FAILED:
            status_text = "[red]FAILED[/red]"
        else:
            status_text = f"[green]{status.value}[/green]"
        table.add_row(name, status_text, webhooks, proxy)

    console.print(table)


@sessions_app.command("logout")
def sessions_logout(
    name: str = typer.Argument(..., help="Session name"),
):
    """删除会话的凭证与配置记录（下次需要重新扫码登录）。"""
    storage = _make_storage()
    folder = storage.get_folder_path(name)
    if not folder.exists():
        console.print(f"[red]Session {name} not found[/red]")
        raise typer.Exit(1)

    asyncio.run(storage.clean(name))
    console.print(f"[green]✓[/green] Logged out {name}")


# ============================================================================
# Status Commands
# ============================================================================


@app.command()
def status():
    """
    显示 wagate 状态。

    展示内容：配置文件、引擎与桥接地址、会话目录、媒体目录、全局 Webhook 与代理。
    """
    from wagate.config.loader import get_config_path, load_config

    config_path = get_config_path()
    config = load_config()
    sessions_path = config.sessions_path
    files_path = config.files_path

    console.print(f"{__logo__} wagate Status\n")

    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Engine: {config.engine} ({config.get_bridge(config.engine).url})")
    console.print(f"Sessions: {sessions_path} {'[green]✓[/green]' if sessions_path.exists() else '[dim]not created[/dim]'}")
    console.print(f"Files: {files_path} {'[green]✓[/green]' if files_path.exists() else '[dim]not created[/dim]'}")
    console.print(f"Files lifetime: {config.files.lifetime}s")
    if config.files.mimetypes:
        console.print(f"Mimetypes: {', '.join(config.files.mimetypes)}")
    console.print(f"Webhook: {config.webhook.url or '[dim]not set[/dim]'}")
    servers = config.proxy.servers
    console.print(f"Proxy: {', '.join(servers) if servers else '[dim]not set[/dim]'}")


if __name__ == "__main__":
    app()

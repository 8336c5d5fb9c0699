"""
CLI 命令模块 - wagate 的所有命令行命令定义。

本模块使用 Typer 框架定义 wagate 的 CLI 命令体系：
- onboard：生成默认配置文件
- gateway：启动 HTTP 网关（会话恢复 + 命令接口 + Webhook 推送）
- sessions：凭据目录管理（列出、清除）
- status：查看配置与存储状态

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（表格、颜色）
- Uvicorn：运行 FastAPI 网关应用
"""

import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from wagate import __version__, __logo__

# 创建 Typer 应用实例（CLI 根命令）
app = typer.Typer(
    name="wagate",
    help=f"{__logo__} wagate - Multi-session WhatsApp gateway",
    no_args_is_help=True,  # 无参数时显示帮助信息
)

console = Console()  # Rich 控制台实例，用于美化输出


def version_callback(value: bool):
    """版本号回调：当用户传入 --version/-v 参数时，打印版本号并退出。"""
    if value:
        console.print(f"{__logo__} wagate v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """wagate CLI 根命令回调。处理全局选项（如 --version）。"""
    pass


def _configure_logging(verbose: bool) -> None:
    """按 --verbose 重新配置 loguru 输出级别。"""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """
    初始化 wagate 配置。

    执行流程：
    1. 在 ~/.wagate/ 下创建默认配置文件 config.json
    2. 打印后续操作指引（配置 Webhook 地址、API Key、启动网关）
    """
    from wagate.config.loader import get_config_path, save_config
    from wagate.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    console.print(f"\n{__logo__} wagate is ready!")
    console.print("\nNext steps:")
    console.print("  1. Set [cyan]gateway.apiKey[/cyan] and [cyan]webhook.url[/cyan] in [cyan]~/.wagate/config.json[/cyan]")
    console.print("  2. Start the WhatsApp bridge and point [cyan]bridge.url[/cyan] at it")
    console.print("  3. Run: [cyan]wagate gateway[/cyan]")


# ============================================================================
# Gateway
# ============================================================================


@app.command()
def gateway(
    host: str = typer.Option(None, "--host", help="Listen address (default: gateway.host)"),
    port: int = typer.Option(None, "--port", "-p", help="Gateway port (default: gateway.port)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    启动 wagate 网关服务（核心启动命令）。

    编排流程：
    1. 加载配置并组装命令服务（凭据存储 + Webhook 通知器 + 会话注册表）
    2. 创建 FastAPI 应用，启动时从磁盘恢复会话
    3. 由 uvicorn 运行，Ctrl+C 时断开所有会话后退出（凭据保留）

    参数:
        host: 监听地址，覆盖配置中的 gateway.host
        port: 监听端口，覆盖配置中的 gateway.port
        verbose: 是否启用详细日志输出
    """
    import uvicorn

    from wagate.config.loader import load_config
    from wagate.gateway.server import create_app

    _configure_logging(verbose)

    config = load_config()
    host = host or config.gateway.host
    port = port or config.gateway.port

    console.print(f"{__logo__} Starting wagate gateway on {host}:{port}...")
    console.print(f"[green]✓[/green] Sessions dir: {config.sessions_path}")
    if config.webhook.url:
        console.print(f"[green]✓[/green] Webhook: {config.webhook.url}")
    else:
        console.print("[yellow]Warning: webhook.url is empty, notifications are disabled[/yellow]")

    fastapi_app = create_app(config)
    uvicorn.run(fastapi_app, host=host, port=port, log_level="debug" if verbose else "info")


# ============================================================================
# Session Commands
# ============================================================================


sessions_app = typer.Typer(help="Manage persisted sessions")
app.add_typer(sessions_app, name="sessions")


@sessions_app.command("list")
def sessions_list():
    """
    列出磁盘上所有可恢复的会话。

    以表格形式展示用户 ID 和对应的凭据目录。
    """
    from wagate.config.loader import load_config
    from wagate.session.storage import CredentialStore

    config = load_config()
    store = CredentialStore(config.sessions_path)
    user_ids = store.discover()

    if not user_ids:
        console.print("No persisted sessions.")
        return

    table = Table(title="Persisted Sessions")
    table.add_column("User ID", style="cyan")
    table.add_column("Credential Path")

    for user_id in user_ids:
        table.add_row(str(user_id), str(store.session_path(user_id)))

    console.print(table)


@sessions_app.command("clear")
def sessions_clear(
    user_id: str = typer.Argument(..., help="User ID whose credentials to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """删除指定用户的凭据目录（下次初始化需要重新扫码）。网关运行时请改用 /api/disconnect。"""
    from wagate.config.loader import load_config
    from wagate.session.storage import CredentialStore
    from wagate.utils.helpers import normalize_user_id

    config = load_config()
    store = CredentialStore(config.sessions_path)

    try:
        uid = normalize_user_id(user_id)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not store.exists(uid):
        console.print(f"[red]No credentials found for user {uid}[/red]")
        raise typer.Exit(1)

    if not yes and not typer.confirm(f"Delete credentials for user {uid}?"):
        raise typer.Exit()

    if store.clear(uid):
        console.print(f"[green]✓[/green] Cleared credentials for user {uid}")
    else:
        console.print(f"[red]Failed to clear credentials for user {uid}[/red]")
        raise typer.Exit(1)


# ============================================================================
# Status Commands
# ============================================================================


@app.command()
def status():
    """
    显示 wagate 配置状态。

    展示内容：
    - 配置文件路径和状态
    - 会话目录与已持久化的会话数量
    - 网关、Webhook、桥接服务的关键配置
    """
    from wagate.config.loader import load_config, get_config_path
    from wagate.session.storage import CredentialStore

    config_path = get_config_path()
    config = load_config()
    sessions_path = config.sessions_path

    console.print(f"{__logo__} wagate Status\n")

    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Sessions dir: {sessions_path} {'[green]✓[/green]' if sessions_path.exists() else '[red]✗[/red]'}")
    if sessions_path.exists():
        console.print(f"Persisted sessions: {len(CredentialStore(sessions_path).discover())}")

    console.print(f"Gateway: {config.gateway.host}:{config.gateway.port}")
    console.print(f"API key: {'[green]✓[/green]' if config.gateway.api_key else '[dim]not set[/dim]'}")
    console.print(f"Webhook: {config.webhook.url or '[dim]disabled[/dim]'}")
    console.print(f"Bridge: {config.bridge.url}")


if __name__ == "__main__":
    app()

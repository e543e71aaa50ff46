"""
CLI 命令模块 - highclaw 的所有命令行命令定义。

本模块使用 Typer 框架定义 highclaw 的 CLI 命令体系：
- onboard：初始化配置和数据目录
- gateway：启动网关服务（HTTP/WebSocket + 消息渠道 + Agent 循环 + 会话维护）
- agent：直接与 Agent 交互（单条消息或交互式对话，支持会话切换）
- sessions：会话管理（列表、查看、切换、删除、重置、淘汰、绑定）
- status：查看系统状态

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（Markdown 渲染、表格等）
- prompt_toolkit：交互式输入（历史记录、多行粘贴）
- uvicorn：网关的 ASGI 服务器
"""

import asyncio
import os
import select
import signal
import sys
import time

import typer
from loguru import logger
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table
from rich.text import Text

from highclaw import __logo__, __version__
from highclaw.config.loader import get_config_path, load_config, save_config
from highclaw.config.schema import Config
from highclaw.session.errors import SessionError
from highclaw.session.keys import build_main_session_key
from highclaw.session.service import SessionService
from highclaw.utils.helpers import ensure_dir, ms_to_datetime, truncate_string

app = typer.Typer(
    name="highclaw",
    help=f"{__logo__} highclaw - Personal AI Gateway",
    no_args_is_help=True,
)

console = Console()
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit", ":q"}

TUI_HELP = (
    "/sessions - List sessions\n"
    "/use <key> - Switch to a session\n"
    "/new - Start a new session\n"
    "/delete <key> - Delete a session (not the active one)\n"
    "/reset - Clear the active session\n"
    "/help - Show this help\n"
    "exit - Quit"
)

# ---------------------------------------------------------------------------
# CLI 输入：使用 prompt_toolkit 实现编辑、粘贴、历史记录和显示
# ---------------------------------------------------------------------------

_PROMPT_SESSION: PromptSession | None = None
_SAVED_TERM_ATTRS = None


def _flush_pending_tty_input() -> None:
    """清除 Agent 处理期间残留在终端中的按键输入。"""
    try:
        fd = sys.stdin.fileno()
        if not os.isatty(fd):
            return
    except (OSError, ValueError):
        return

    try:
        import termios
        termios.tcflush(fd, termios.TCIFLUSH)
        return
    except (ImportError, OSError):
        pass

    try:
        while True:
            ready, _, _ = select.select([fd], [], [], 0)
            if not ready:
                break
            if not os.read(fd, 4096):
                break
    except OSError:
        return


def _restore_terminal() -> None:
    """恢复终端到原始状态（prompt_toolkit 会修改终端属性）。"""
    if _SAVED_TERM_ATTRS is None:
        return
    try:
        import termios
        termios.tcsetattr(sys.stdin.fileno(), termios.TCSADRAIN, _SAVED_TERM_ATTRS)
    except (ImportError, OSError):
        pass


def _init_prompt_session(config: Config) -> None:
    """创建 prompt_toolkit 会话，历史记录保存在 <数据目录>/history/cli_history。"""
    global _PROMPT_SESSION, _SAVED_TERM_ATTRS

    try:
        import termios
        _SAVED_TERM_ATTRS = termios.tcgetattr(sys.stdin.fileno())
    except (ImportError, OSError, ValueError):
        pass

    history_file = ensure_dir(config.data_path / "history") / "cli_history"

    _PROMPT_SESSION = PromptSession(
        history=FileHistory(str(history_file)),
        enable_open_in_editor=False,
        multiline=False,
    )


def _print_agent_response(response: str, render_markdown: bool) -> None:
    content = response or ""
    body = Markdown(content) if render_markdown else Text(content)
    console.print()
    console.print(f"[cyan]{__logo__} highclaw[/cyan]")
    console.print(body)
    console.print()


def _is_exit_command(command: str) -> bool:
    return command.lower() in EXIT_COMMANDS


async def _read_interactive_input_async(session_key: str) -> str:
    if _PROMPT_SESSION is None:
        raise RuntimeError("Call _init_prompt_session() first")
    try:
        with patch_stdout():
            return await _PROMPT_SESSION.prompt_async(
                HTML(f"<ansigray>[{session_key}]</ansigray> <b fg='ansiblue'>You:</b> "),
            )
    except EOFError as exc:
        raise KeyboardInterrupt from exc


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} highclaw v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """highclaw CLI 根命令回调。"""
    pass


# ============================================================================
# 公共组装
# ============================================================================


def _make_provider(config: Config):
    """根据配置创建 LiteLLM 提供者，未配置 API Key 时报错退出。"""
    from highclaw.providers.litellm_provider import LiteLLMProvider

    model = config.agents.defaults.model
    p = config.get_provider(model)
    if not (p and p.api_key):
        console.print("[red]Error: No API key configured.[/red]")
        console.print(f"Set one in {get_config_path()} under providers section")
        raise typer.Exit(1)
    return LiteLLMProvider(
        api_key=p.api_key,
        api_base=p.api_base,
        default_model=model,
        extra_headers=p.extra_headers,
    )


def _make_runner(config: Config):
    from highclaw.agent.runner import DEFAULT_SYSTEM_PROMPT, LLMAgentRunner

    defaults = config.agents.defaults
    return LLMAgentRunner(
        _make_provider(config),
        model=defaults.model,
        system_prompt=defaults.system_prompt or DEFAULT_SYSTEM_PROMPT,
        max_tokens=defaults.max_tokens,
        temperature=defaults.temperature,
    )


def _load_service(config: Config | None = None, with_runner: bool = False) -> SessionService:
    config = config or load_config()
    runner = _make_runner(config) if with_runner else None
    return SessionService.from_config(config, runner=runner)


def _fail(err: SessionError) -> None:
    console.print(f"[red]Error ({err.code}): {err}[/red]")
    raise typer.Exit(1)


def _format_ms(ms: int) -> str:
    if not ms:
        return "-"
    return ms_to_datetime(ms).strftime("%Y-%m-%d %H:%M:%S")


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """
    初始化 highclaw 配置和数据目录。

    执行流程：
    1. 在 ~/.highclaw/ 下创建默认配置文件 config.json
    2. 创建 sessions/ 目录
    3. 打印后续操作指引
    """
    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config, config_path)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    sessions_dir = ensure_dir(config.data_path / "sessions")
    console.print(f"[green]✓[/green] Created session store at {sessions_dir}")

    console.print(f"\n{__logo__} highclaw is ready!")
    console.print("\nNext steps:")
    console.print(f"  1. Add your API key to [cyan]{config_path}[/cyan]")
    console.print("  2. Chat: [cyan]highclaw agent -m \"Hello!\"[/cyan]")
    console.print("  3. Serve: [cyan]highclaw gateway[/cyan]")


# ============================================================================
# Gateway / Server
# ============================================================================


@app.command()
def gateway(
    port: int = typer.Option(None, "--port", "-p", help="Gateway port (default from config)"),
    host: str = typer.Option(None, "--host", help="Bind address (default from config)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    启动 highclaw 网关服务（核心启动命令）。

    编排所有子服务：
    1. 加载配置，组装会话服务（带 LLM Agent）和消息总线
    2. 创建 Agent 循环（消费渠道消息）
    3. 创建渠道管理器并启动已启用的渠道
    4. 启动会话维护服务（自动保存 + 过期淘汰）
    5. 启动 FastAPI 应用（HTTP + WebSocket RPC）
    """
    import uvicorn

    from highclaw.agent.loop import AgentLoop
    from highclaw.bus.queue import MessageBus
    from highclaw.channels.manager import ChannelManager
    from highclaw.gateway.http import create_app
    from highclaw.gateway.rpc import RPCDispatcher
    from highclaw.housekeeping.service import HousekeepingService

    if verbose:
        logger.remove()
        logger.add(sys.stderr, level="DEBUG")

    config = load_config()
    host = host or config.gateway.host
    port = port or config.gateway.port

    console.print(f"{__logo__} Starting highclaw gateway on {host}:{port}...")

    service = _load_service(config, with_runner=True)
    bus = MessageBus()
    agent_loop = AgentLoop(bus, service)
    channels = ChannelManager(config, bus)
    housekeeping = HousekeepingService.from_config(service, config)
    dispatcher = RPCDispatcher(
        service,
        prune_max_age_days=config.session.prune_max_age_days,
        prune_max_count=config.session.prune_max_count,
    )
    api = create_app(service, dispatcher=dispatcher, channels=channels)

    if channels.enabled_channels:
        console.print(f"[green]✓[/green] Channels enabled: {', '.join(channels.enabled_channels)}")
    else:
        console.print("[yellow]Warning: No channels enabled[/yellow]")
    console.print(f"[green]✓[/green] Session scope: {config.session.dm_scope.value}")
    console.print(f"[green]✓[/green] Sessions stored in {service.store.root}")

    server = uvicorn.Server(uvicorn.Config(
        api, host=host, port=port, log_level="debug" if verbose else "info",
    ))

    async def run():
        await housekeeping.start()
        try:
            await asyncio.gather(
                server.serve(),
                agent_loop.run(),
                channels.start_all(),
            )
        finally:
            console.print("\nShutting down...")
            agent_loop.stop()
            housekeeping.stop()
            await channels.stop_all()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


# ============================================================================
# Agent Commands
# ============================================================================


def _initial_session_key(service: SessionService, config: Config, explicit: str | None) -> str:
    """显式指定 > 当前会话指针 > 最近活跃会话 > 主会话。"""
    if explicit:
        return explicit.strip()
    return (
        service.current()
        or service.last_session_key()
        or build_main_session_key(config.agents.defaults.agent_id, config.session.main_key)
    )


def _new_tui_session_key(service: SessionService, config: Config) -> str:
    """session-<秒级时间戳后五位>；与已有会话重名时追加序号，直到得到一个未使用的键。"""
    agent_id = config.agents.defaults.agent_id
    stem = f"session-{int(time.time()) % 100000}"
    key = build_main_session_key(agent_id, stem)
    n = 1
    while service.exists(key):
        n += 1
        key = build_main_session_key(agent_id, f"{stem}-{n}")
    return key


def _print_sessions_table(service: SessionService, current: str = "") -> None:
    table = Table(title="Sessions")
    table.add_column("", style="green")
    table.add_column("Key", style="cyan")
    table.add_column("Channel")
    table.add_column("Messages", justify="right")
    table.add_column("Model")
    table.add_column("Last activity")

    for s in service.list():
        table.add_row(
            "*" if s.key == current else "",
            s.key,
            s.channel or "-",
            str(s.message_count),
            s.model or "-",
            s.last_activity_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


def _handle_tui_command(command: str, service: SessionService, config: Config, session_key: str) -> str:
    """
    处理交互模式中的会话命令。

    返回:
        处理后的当前会话键
    """
    name, _, arg = command.partition(" ")
    arg = arg.strip()

    if name == "/sessions":
        _print_sessions_table(service, current=session_key)
    elif name == "/use":
        if not arg:
            console.print("Usage: /use <key>")
        elif not service.exists(arg):
            console.print(f"[red]Session not found: {arg}[/red]")
        else:
            service.set_current(arg)
            session_key = arg
            console.print(f"Switched to [cyan]{arg}[/cyan]")
    elif name == "/new":
        session_key = _new_tui_session_key(service, config)
        service.create(session_key, "cli")
        service.set_current(session_key)
        console.print(f"Started new session: [cyan]{session_key}[/cyan]")
    elif name == "/delete":
        if not arg:
            console.print("Usage: /delete <key>")
        elif arg == session_key:
            console.print("[red]Cannot delete the active session[/red]")
        else:
            try:
                deleted = service.delete(arg, protect_current=True)
            except SessionError as e:
                console.print(f"[red]{e}[/red]")
            else:
                console.print(f"Deleted {arg}" if deleted else f"No such session: {arg}")
    elif name == "/reset":
        if service.exists(session_key):
            service.reset(session_key)
        console.print(f"Cleared [cyan]{session_key}[/cyan]")
    elif name == "/help":
        console.print(TUI_HELP)
    else:
        console.print(f"Unknown command: {name} (try /help)")
    return session_key


TUI_COMMANDS = {"/sessions", "/use", "/new", "/delete", "/reset", "/help"}


@app.command()
def agent(
    message: str = typer.Option(None, "--message", "-m", help="Message to send to the agent"),
    session_key: str = typer.Option(None, "--session", "-s", help="Session key"),
    markdown: bool = typer.Option(True, "--markdown/--no-markdown", help="Render assistant output as Markdown"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show highclaw runtime logs during chat"),
):
    """
    直接与 Agent 交互（CLI 模式）。

    1. 单条消息模式：highclaw agent -m "你好"
    2. 交互模式：highclaw agent（支持 /sessions、/use、/new、/delete 等会话命令）

    初始会话：--session 指定 > 当前会话 > 最近活跃会话 > 主会话。
    """
    from highclaw.agent.loop import AgentLoop
    from highclaw.bus.queue import MessageBus

    if logs:
        logger.enable("highclaw")
    else:
        logger.disable("highclaw")

    config = load_config()
    service = _load_service(config, with_runner=True)
    agent_loop = AgentLoop(MessageBus(), service)
    current_key = _initial_session_key(service, config, session_key)

    def _thinking_ctx():
        if logs:
            from contextlib import nullcontext
            return nullcontext()
        return console.status("[dim]highclaw is thinking...[/dim]", spinner="dots")

    if message:
        async def run_once():
            with _thinking_ctx():
                response = await agent_loop.process_direct(message, session_key=current_key)
            _print_agent_response(response, render_markdown=markdown)

        asyncio.run(run_once())
        return

    _init_prompt_session(config)
    console.print(f"{__logo__} Interactive mode (type [bold]exit[/bold] or [bold]Ctrl+C[/bold] to quit)")
    console.print(f"Session: [cyan]{current_key}[/cyan]  (/help for session commands)\n")

    def _exit_on_sigint(signum, frame):
        _restore_terminal()
        console.print("\nGoodbye!")
        os._exit(0)

    signal.signal(signal.SIGINT, _exit_on_sigint)

    async def run_interactive():
        key = current_key
        while True:
            try:
                _flush_pending_tty_input()
                user_input = await _read_interactive_input_async(key)
                command = user_input.strip()
                if not command:
                    continue

                if _is_exit_command(command):
                    _restore_terminal()
                    console.print("\nGoodbye!")
                    break

                if command.split(" ", 1)[0].lower() in TUI_COMMANDS:
                    key = _handle_tui_command(command, service, config, key)
                    continue

                with _thinking_ctx():
                    response = await agent_loop.process_direct(user_input, session_key=key)
                _print_agent_response(response, render_markdown=markdown)
            except KeyboardInterrupt:
                _restore_terminal()
                console.print("\nGoodbye!")
                break

    asyncio.run(run_interactive())


# ============================================================================
# Session Commands
# ============================================================================


sessions_app = typer.Typer(help="Manage sessions")
app.add_typer(sessions_app, name="sessions")


@sessions_app.command("list")
def sessions_list():
    """以表格形式列出所有会话（按最后活跃时间降序，* 标记当前会话）。"""
    service = _load_service()
    if not service.list():
        console.print("No sessions.")
        return
    _print_sessions_table(service, current=service.current())


@sessions_app.command("show")
def sessions_show(
    key: str = typer.Argument(..., help="Session key"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of recent messages to show"),
):
    """显示会话元数据和最近的消息。"""
    from highclaw.session.service import session_to_dict

    service = _load_service()
    try:
        data = session_to_dict(service.get(key))
    except SessionError as e:
        _fail(e)

    console.print(f"[cyan]{data['key']}[/cyan]")
    console.print(f"Channel: {data.get('channel') or '-'}")
    console.print(f"Agent: {data.get('agentId') or '-'}   Model: {data.get('model') or '-'}")
    console.print(f"Messages: {data['messageCount']}   Created: {_format_ms(data['createdAt'])}"
                  f"   Last activity: {_format_ms(data['lastActivityAt'])}")
    console.print()
    messages = data["messages"][-limit:] if limit > 0 else data["messages"]
    for m in messages:
        role = m["role"]
        style = {"user": "blue", "assistant": "cyan"}.get(role, "yellow")
        console.print(f"[{style}]{role}[/{style}]: {truncate_string(m['content'], 200)}")


@sessions_app.command("current")
def sessions_current():
    """显示当前会话键。"""
    key = _load_service().current()
    console.print(key or "[dim]no current session[/dim]")


@sessions_app.command("use")
def sessions_use(key: str = typer.Argument(..., help="Session key")):
    """切换当前会话。"""
    service = _load_service()
    if not service.exists(key):
        console.print(f"[red]Session not found: {key}[/red]")
        raise typer.Exit(1)
    service.set_current(key)
    console.print(f"[green]✓[/green] Current session: {key}")


@sessions_app.command("delete")
def sessions_delete(
    key: str = typer.Argument(..., help="Session key"),
    force: bool = typer.Option(False, "--force", "-f", help="Allow deleting the current session"),
):
    """删除会话（默认禁止删除当前会话）。"""
    service = _load_service()
    try:
        deleted = service.delete(key, protect_current=not force)
    except SessionError as e:
        _fail(e)
    if deleted:
        console.print(f"[green]✓[/green] Deleted {key}")
    else:
        console.print(f"[yellow]No such session: {key}[/yellow]")


@sessions_app.command("reset")
def sessions_reset(key: str = typer.Argument(..., help="Session key")):
    """清空会话消息（保留元数据）。"""
    service = _load_service()
    try:
        service.reset(key)
    except SessionError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Reset {key}")


@sessions_app.command("last")
def sessions_last():
    """显示最近活跃的会话键。"""
    key = _load_service().last_session_key()
    console.print(key or "[dim]no sessions[/dim]")


@sessions_app.command("prune")
def sessions_prune(
    max_age_days: int = typer.Option(None, "--max-age-days", help="Prune sessions idle longer than this (0 = no limit)"),
    max_count: int = typer.Option(None, "--max-count", help="Keep at most this many sessions (0 = no limit)"),
):
    """淘汰闲置过久或超出数量上限的会话。"""
    config = load_config()
    service = _load_service(config)
    age = config.session.prune_max_age_days if max_age_days is None else max_age_days
    count = config.session.prune_max_count if max_count is None else max_count
    result = service.prune_stale(age, count)
    console.print(f"[green]✓[/green] Pruned {result.pruned} stale, {result.capped} over limit")


@sessions_app.command("bind")
def sessions_bind(
    channel: str = typer.Argument(..., help="Channel name"),
    conversation: str = typer.Argument(..., help="Conversation id within the channel"),
    key: str = typer.Argument(..., help="Session key"),
):
    """把 (渠道, 会话标识) 显式绑定到一个会话键。"""
    service = _load_service()
    try:
        binding = service.bind(channel, conversation, key)
    except SessionError as e:
        _fail(e)
    console.print(f"[green]✓[/green] {binding.channel}|{binding.conversation} -> {binding.session_key}")


@sessions_app.command("unbind")
def sessions_unbind(
    channel: str = typer.Argument(..., help="Channel name"),
    conversation: str = typer.Argument(..., help="Conversation id within the channel"),
):
    """删除显式绑定。"""
    service = _load_service()
    try:
        removed = service.unbind(channel, conversation)
    except SessionError as e:
        _fail(e)
    if removed:
        console.print(f"[green]✓[/green] Removed binding {channel}|{conversation}")
    else:
        console.print(f"[yellow]No binding for {channel}|{conversation}[/yellow]")


@sessions_app.command("bindings")
def sessions_bindings():
    """列出所有显式绑定。"""
    bindings = _load_service().list_bindings()
    if not bindings:
        console.print("No bindings.")
        return

    table = Table(title="Session Bindings")
    table.add_column("Channel", style="cyan")
    table.add_column("Conversation")
    table.add_column("Session", style="green")
    for b in bindings:
        table.add_row(b.channel, b.conversation, b.session_key)
    console.print(table)


# ============================================================================
# Status Commands
# ============================================================================


@app.command()
def status():
    """
    显示 highclaw 系统状态。

    展示内容：配置文件、数据目录、模型、提供商 API Key 状态、会话统计、渠道。
    """
    config_path = get_config_path()
    config = load_config()
    data_path = config.data_path

    console.print(f"{__logo__} highclaw Status\n")

    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Data: {data_path} {'[green]✓[/green]' if data_path.exists() else '[red]✗[/red]'}")
    console.print(f"Model: {config.agents.defaults.model}")

    for name in ("anthropic", "openai", "openrouter", "deepseek"):
        has_key = bool(getattr(config.providers, name).api_key)
        console.print(f"{name}: {'[green]✓[/green]' if has_key else '[dim]not set[/dim]'}")

    service = _load_service(config)
    console.print(f"\nDM scope: {config.session.dm_scope.value}")
    console.print(f"Sessions: {len(service.list())}")
    console.print(f"Current: {service.current() or '-'}")
    console.print(f"Bindings: {len(service.list_bindings())}")

    wa = config.channels.whatsapp
    console.print(f"\nWhatsApp: {'[green]✓[/green] ' + wa.bridge_url if wa.enabled else '[dim]disabled[/dim]'}")


if __name__ == "__main__":
    app()

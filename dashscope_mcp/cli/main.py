"""
dashscope-mcp CLI.

Run `dashscope-mcp serve` to start the stdio protocol server, or
`dashscope-mcp proxy` to start the HTTP proxy and web client.
"""

import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax

from dashscope_mcp import __version__
from dashscope_mcp.errors import DashScopeMCPError
from dashscope_mcp.log import setup_logging, stderr_console
from dashscope_mcp.validation.config import Config

console = Console()


def _load_config(ctx: click.Context) -> Config:
    try:
        config = Config.load(path=ctx.obj.get("config_path"))
        level = ctx.obj.get("log_level") or config.merged.logging.level
    except DashScopeMCPError as e:
        stderr_console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    setup_logging(level)
    return config


def _print_json(title: str, data) -> None:
    text = json.dumps(data, indent=2, ensure_ascii=False)
    console.print(Panel(Syntax(text, "json", word_wrap=True), title=title, title_align="left"))


@click.group()
@click.version_option(__version__, "--version", "-v", prog_name="dashscope-mcp")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Config file to use instead of .dashscope-mcp/config.yaml",
)
@click.option("--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], log_level: Optional[str]) -> None:
    """
    dashscope-mcp - DashScope chat completions over MCP.

    \b
    Examples:
        dashscope-mcp serve                 # stdio server for MCP clients
        dashscope-mcp proxy --port 3000     # HTTP API + web client
        dashscope-mcp chat "hello"          # one-shot chat
        dashscope-mcp probe                 # exercise a stdio server
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


@cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the stdio protocol server."""
    from dashscope_mcp.providers.base import DashScopeClient
    from dashscope_mcp.server.registry import ToolRegistry
    from dashscope_mcp.server.stdio import StdioServer

    config = _load_config(ctx)
    try:
        api_key = config.require_api_key()
    except DashScopeMCPError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    with DashScopeClient(api_key, config.dashscope) as client:
        server = StdioServer(ToolRegistry(client))
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            pass


@cli.command()
@click.option("--host", help="Bind address (default from config)")
@click.option("--port", type=int, help="Port (default from config or $PORT)")
@click.pass_context
def proxy(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Run the HTTP proxy in front of a supervised stdio server."""
    from dashscope_mcp.proxy.app import run_proxy

    config = _load_config(ctx)
    if not config.dashscope.api_key:
        console.print(
            "[yellow]Warning: DASHSCOPE_API_KEY is not set; the stdio server will refuse to start.[/yellow]"
        )
    run_proxy(config, host=host, port=port)


@cli.command()
@click.argument("message", nargs=-1, required=True)
@click.option("--system", "system_prompt", help="System prompt")
@click.option("--model", help="Model name (default from config)")
@click.option("--temperature", type=click.FloatRange(0.0, 1.0), help="Sampling temperature")
@click.pass_context
def chat(
    ctx: click.Context,
    message: tuple,
    system_prompt: Optional[str],
    model: Optional[str],
    temperature: Optional[float],
) -> None:
    """Send one message to DashScope and print the reply."""
    from dashscope_mcp.providers.base import DashScopeClient, build_messages

    config = _load_config(ctx)
    try:
        api_key = config.require_api_key()
        model = model or config.dashscope.model
        with DashScopeClient(api_key, config.dashscope) as client:
            with console.status("[bold blue]Thinking...[/bold blue]"):
                completion = client.chat_completion(
                    model,
                    build_messages(" ".join(message), system_prompt),
                    temperature=temperature,
                )
    except DashScopeMCPError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    console.print(Markdown(completion.content))
    usage = completion.usage
    console.print(
        f"[dim]{model} · tokens in {usage.input_tokens}, out {usage.output_tokens}, "
        f"total {usage.total_tokens} · {completion.finish_reason}[/dim]"
    )


@cli.command()
@click.option("--message", help="Also call ai_chat with this message")
@click.option("--path", default=".", show_default=True, help="Path to read through file://")
@click.pass_context
def probe(ctx: click.Context, message: Optional[str], path: str) -> None:
    """Spawn a stdio server and exercise every protocol method."""
    from dashscope_mcp.client import StdioClient

    config = _load_config(ctx)
    command = config.proxy.server_command
    console.print(f"[dim]Starting {' '.join(command)}[/dim]")
    console.print(f"[dim]API key: {'configured' if config.dashscope.api_key else 'not configured'}[/dim]")

    uri = "file://" + str(Path(path).resolve())
    try:
        with StdioClient(command, env=config.child_environment()) as client:
            _print_json("initialize", client.initialize())
            _print_json("tools/list", client.list_tools())
            _print_json("resources/list", client.list_resources())
            _print_json(f"resources/read {uri}", client.read_resource(uri))
            if message:
                result = client.call_tool("ai_chat", {"message": message})
                _print_json("tools/call ai_chat", result)
    except DashScopeMCPError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    console.print("[green]All requests answered.[/green]")


@cli.command()
def init() -> None:
    """Write a default global config file."""
    path = Config.create_default_global()
    console.print(f"[green]Config: {path}[/green]")
    console.print("[dim]Set DASHSCOPE_API_KEY in your environment or a .env file.[/dim]")


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()

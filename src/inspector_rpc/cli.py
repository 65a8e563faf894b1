"""inspector-rpc CLI.

Commands:
    inspector-rpc serve                       - Run the example server over stdio
    inspector-rpc serve-sse                   - Run the example server over SSE
    inspector-rpc probe COMMAND [ARGS]...     - Handshake with a server and list what it offers
    inspector-rpc probe --url URL             - Same, over SSE
    inspector-rpc call-tool NAME --arg k=v    - Call one tool and print the result
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click

from . import __version__
from .client import Client
from .config import ProtocolOptions
from .errors import ProtocolError
from .transport.base import Transport
from .types import Implementation

CLIENT_NAME = "inspector-rpc"


def parse_tool_arguments(pairs: tuple[str, ...]) -> dict[str, Any]:
    """Turn ``key=value`` pairs into tool arguments.

    Values that parse as JSON (numbers, booleans, objects) keep their type;
    anything else is passed as a string.
    """
    arguments: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--arg")
        try:
            arguments[key] = json.loads(value)
        except json.JSONDecodeError:
            arguments[key] = value
    return arguments


def _build_transport(url: str | None, command: tuple[str, ...]) -> Transport:
    from .transport.sse import SseClientTransport
    from .transport.stdio import StdioClientTransport, StdioServerParameters

    if url and command:
        raise click.UsageError("Pass either --url or a server command, not both")
    if url:
        return SseClientTransport(url)
    if not command:
        raise click.UsageError("Pass --url or a server command to launch")
    return StdioClientTransport(StdioServerParameters(command=command[0], args=list(command[1:])))


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


@click.group(invoke_without_command=True)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging (to stderr)")
@click.option("--timeout", type=float, default=None, help="Request timeout in seconds")
@click.version_option(__version__)
@click.pass_context
def main(ctx: click.Context, verbose: bool, timeout: float | None) -> None:
    """JSON-RPC session tools: run an example server or probe one."""
    # Logs go to stderr, protocol to stdout
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        options = ProtocolOptions.from_env()
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    if timeout is not None:
        options.request_timeout = timeout
    ctx.obj = options

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# =============================================================================
# Server Commands
# =============================================================================


@main.command()
@click.pass_obj
def serve(options: ProtocolOptions) -> None:
    """Run the example server over stdio.

    Reads JSON-RPC messages from stdin (one per line).
    Writes JSON-RPC messages to stdout (one per line).
    """
    from .example_server import build_example_server
    from .transport.stdio import StdioServerTransport

    async def run() -> None:
        server = build_example_server(options)
        closed = asyncio.Event()
        server.on_close(closed.set)
        await server.connect(StdioServerTransport())
        await closed.wait()

    asyncio.run(run())


@main.command("serve-sse")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=3001, help="Port to bind to")
@click.pass_obj
def serve_sse(options: ProtocolOptions, host: str, port: int) -> None:
    """Run the example server over SSE (GET /sse, POST /messages)."""
    import uvicorn

    from .example_server import build_example_server
    from .transport.sse import SseServerTransport, create_sse_app

    async def on_session(transport: SseServerTransport) -> None:
        await build_example_server(options).connect(transport)

    click.echo(f"Starting example server on http://{host}:{port}/sse", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(create_sse_app(on_session), host=host, port=port)


# =============================================================================
# Client Commands
# =============================================================================


async def _open_client(options: ProtocolOptions, transport: Transport) -> Client:
    client = Client(Implementation(name=CLIENT_NAME, version=__version__), options=options)
    await client.connect(transport)
    try:
        await client.initialize()
    except BaseException:
        await client.close()
        raise
    return client


@main.command(context_settings={"ignore_unknown_options": True})
@click.option("--url", default=None, help="SSE endpoint of a running server")
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def probe(options: ProtocolOptions, url: str | None, command: tuple[str, ...]) -> None:
    """Connect to a server and print what it offers.

    Examples:

        # Launch a server over stdio
        inspector-rpc probe inspector-rpc serve

        # Connect to a running SSE server
        inspector-rpc probe --url http://127.0.0.1:3001/sse
    """
    transport = _build_transport(url, command)

    async def run() -> dict[str, Any]:
        client = await _open_client(options, transport)
        try:
            report: dict[str, Any] = {
                "serverInfo": client.server_info.model_dump(exclude_none=True)
                if client.server_info
                else None,
                "capabilities": client.server_capabilities.model_dump(exclude_none=True)
                if client.server_capabilities
                else {},
            }
            capabilities = client.server_capabilities
            if capabilities and capabilities.tools is not None:
                tools = await client.list_tools()
                report["tools"] = [tool.model_dump(exclude_none=True) for tool in tools.tools]
            if capabilities and capabilities.resources is not None:
                resources = await client.list_resources()
                report["resources"] = [
                    resource.model_dump(exclude_none=True) for resource in resources.resources
                ]
            if capabilities and capabilities.prompts is not None:
                prompts = await client.list_prompts()
                report["prompts"] = [
                    prompt.model_dump(exclude_none=True) for prompt in prompts.prompts
                ]
            return report
        finally:
            await client.close()

    try:
        _echo_json(asyncio.run(run()))
    except (ProtocolError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command("call-tool", context_settings={"ignore_unknown_options": True})
@click.argument("name")
@click.option("--arg", "args", multiple=True, help="Tool argument as key=value (repeatable)")
@click.option("--url", default=None, help="SSE endpoint of a running server")
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def call_tool(
    options: ProtocolOptions,
    name: str,
    args: tuple[str, ...],
    url: str | None,
    command: tuple[str, ...],
) -> None:
    """Call one tool and print its result.

    Examples:

        inspector-rpc call-tool add --arg a=1 --arg b=2 inspector-rpc serve
    """
    arguments = parse_tool_arguments(args)
    transport = _build_transport(url, command)

    async def run() -> dict[str, Any]:
        client = await _open_client(options, transport)
        try:
            result = await client.call_tool(name, arguments)
            return result.model_dump(exclude_none=True)
        finally:
            await client.close()

    try:
        result = asyncio.run(run())
    except (ProtocolError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    _echo_json(result)
    if result.get("isError"):
        sys.exit(1)

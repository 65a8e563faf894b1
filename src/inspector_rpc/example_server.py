"""Example server used by the CLI and the integration tests.

Exposes two tools (echo, add), one text resource and one prompt, which is
enough to exercise every client method against a real peer.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ValidationError

from . import __version__
from .config import ProtocolOptions
from .errors import JsonRpcProtocolError
from .server import Server
from .types import (
    CallToolRequestParams,
    CallToolResult,
    EmptyResult,
    GetPromptRequestParams,
    GetPromptResult,
    Implementation,
    ListPromptsResult,
    ListResourcesResult,
    ListToolsResult,
    LoggingCapability,
    Method,
    PaginatedRequestParams,
    Prompt,
    PromptArgument,
    PromptMessage,
    PromptsCapability,
    ReadResourceRequestParams,
    ReadResourceResult,
    Resource,
    ResourcesCapability,
    ServerCapabilities,
    SetLevelRequestParams,
    TextContent,
    TextResourceContents,
    Tool,
    ToolsCapability,
)

logger = logging.getLogger(__name__)

SERVER_NAME = "inspector-rpc-example"

# Error code for unknown tool/resource/prompt names
RESOURCE_NOT_FOUND = -32002

GREETING_URI = "example://greeting"


class EchoArguments(BaseModel):
    message: str


class AddArguments(BaseModel):
    a: float
    b: float


TOOLS = [
    Tool(
        name="echo",
        description="Echo back the given message",
        inputSchema=EchoArguments.model_json_schema(),
    ),
    Tool(
        name="add",
        description="Add two numbers",
        inputSchema=AddArguments.model_json_schema(),
    ),
]

RESOURCES = [
    Resource(
        uri=GREETING_URI,
        name="Greeting",
        description="A static greeting",
        mimeType="text/plain",
    ),
]

PROMPTS = [
    Prompt(
        name="greet",
        description="Ask the model to greet someone",
        arguments=[PromptArgument(name="name", description="Who to greet", required=False)],
    ),
]


def _call_tool(params: CallToolRequestParams) -> CallToolResult:
    arguments = params.arguments or {}
    try:
        if params.name == "echo":
            echo = EchoArguments.model_validate(arguments)
            text = f"Echo: {echo.message}"
        elif params.name == "add":
            add = AddArguments.model_validate(arguments)
            text = str(add.a + add.b)
        else:
            raise JsonRpcProtocolError(
                code=RESOURCE_NOT_FOUND,
                message=f"Unknown tool: {params.name}",
            )
    except ValidationError as e:
        # Tool-level failure: reported in the result, not as a protocol error
        return CallToolResult(content=[TextContent(text=f"Invalid arguments: {e}")], isError=True)

    return CallToolResult(content=[TextContent(text=text)])


def _read_resource(params: ReadResourceRequestParams) -> ReadResourceResult:
    if params.uri != GREETING_URI:
        raise JsonRpcProtocolError(
            code=RESOURCE_NOT_FOUND,
            message=f"Resource not found: {params.uri}",
        )
    return ReadResourceResult(
        contents=[TextResourceContents(uri=GREETING_URI, mimeType="text/plain", text="Hello!")]
    )


def _get_prompt(params: GetPromptRequestParams) -> GetPromptResult:
    if params.name != "greet":
        raise JsonRpcProtocolError(
            code=RESOURCE_NOT_FOUND,
            message=f"Unknown prompt: {params.name}",
        )
    name = (params.arguments or {}).get("name", "world")
    return GetPromptResult(
        description="Greeting prompt",
        messages=[PromptMessage(role="user", content=TextContent(text=f"Please greet {name}."))],
    )


def build_example_server(options: ProtocolOptions | None = None) -> Server:
    """Create a Server with the example tools, resources and prompts registered."""
    server = Server(
        Implementation(name=SERVER_NAME, version=__version__),
        ServerCapabilities(
            logging=LoggingCapability(),
            prompts=PromptsCapability(),
            resources=ResourcesCapability(),
            tools=ToolsCapability(),
        ),
        options=options,
    )

    server.set_request_handler(
        Method.TOOLS_LIST, PaginatedRequestParams, lambda _params: ListToolsResult(tools=TOOLS)
    )
    server.set_request_handler(Method.TOOLS_CALL, CallToolRequestParams, _call_tool)
    server.set_request_handler(
        Method.RESOURCES_LIST,
        PaginatedRequestParams,
        lambda _params: ListResourcesResult(resources=RESOURCES),
    )
    server.set_request_handler(
        Method.RESOURCES_READ, ReadResourceRequestParams, _read_resource
    )
    server.set_request_handler(
        Method.PROMPTS_LIST, PaginatedRequestParams, lambda _params: ListPromptsResult(prompts=PROMPTS)
    )
    server.set_request_handler(Method.PROMPTS_GET, GetPromptRequestParams, _get_prompt)

    async def set_level(params: SetLevelRequestParams) -> EmptyResult:
        logger.info(f"Client set log level to {params.level}")
        await server.send_log_message("info", f"Log level set to {params.level}", SERVER_NAME)
        return EmptyResult()

    server.set_request_handler(Method.LOGGING_SET_LEVEL, SetLevelRequestParams, set_level)
    return server

from logging import Logger
from typing import Literal

import click
from fastmcp import FastMCP
from fastmcp.server.middleware.logging import LoggingMiddleware
from fastmcp.utilities.logging import configure_logging, get_logger

from issue_fix_agent.clients.auth import AppAuthenticator, get_app_githubkit_client
from issue_fix_agent.context import ContextGatherer, new_standards_cache
from issue_fix_agent.orchestrator import Orchestrator
from issue_fix_agent.publisher import GitPublisher
from issue_fix_agent.sampling.generator import PatchGenerator
from issue_fix_agent.sampling.handler import get_model_client
from issue_fix_agent.servers.webhook import WebhookServer
from issue_fix_agent.settings import AgentSettings

logger: Logger = get_logger(name=__name__)


def new_orchestrator(settings: AgentSettings) -> Orchestrator:
    """Wire the pipeline. The credential and standards caches live as long as the orchestrator."""

    return Orchestrator(
        settings=settings,
        authenticator=AppAuthenticator(
            app_id=settings.app_id,
            private_key=settings.private_key,
            githubkit_client=get_app_githubkit_client(timeout=settings.request_timeout),
            logger=logger,
        ),
        context_gatherer=ContextGatherer(standards_cache=new_standards_cache(), standards_path=settings.standards_path),
        patch_generator=PatchGenerator(
            model_client=get_model_client(settings=settings),
            branch_prefix=settings.branch_prefix,
            standards_path=settings.standards_path,
            max_attempts=settings.max_attempts,
        ),
        publisher=GitPublisher(default_branch=settings.default_branch),
    )


def new_mcp_server(settings: AgentSettings, orchestrator: Orchestrator | None = None) -> FastMCP[None]:
    mcp: FastMCP[None] = FastMCP[None](name="Issue Fix Agent")

    mcp.add_middleware(middleware=LoggingMiddleware(include_payloads=True, logger=logger))

    webhook_server: WebhookServer = WebhookServer(orchestrator=orchestrator or new_orchestrator(settings=settings), logger=logger)
    _ = webhook_server.register_routes(fastmcp=mcp)
    _ = webhook_server.register_tools(fastmcp=mcp)

    return mcp


@click.command()
@click.option(
    "--transport",
    type=click.Choice(["stdio", "streamable-http"]),
    default="streamable-http",
    help="The transport to run the server on. The webhook endpoint is only served over streamable-http.",
)
@click.option("--host", default="0.0.0.0", help="The host to bind to.")  # noqa: S104
@click.option("--port", default=8000, type=int, help="The port to listen on.")
def run_agent(transport: Literal["stdio", "streamable-http"], host: str, port: int):
    configure_logging()

    settings: AgentSettings = AgentSettings.from_env()

    mcp: FastMCP[None] = new_mcp_server(settings=settings)

    if transport == "stdio":
        mcp.run(transport=transport)
        return

    mcp.run(transport=transport, host=host, port=port)


if __name__ == "__main__":
    run_agent()

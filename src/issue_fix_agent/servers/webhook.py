from logging import Logger
from typing import Annotated, Any

from fastmcp.server import FastMCP
from fastmcp.tools import Tool
from fastmcp.utilities.logging import get_logger
from pydantic import Field
from starlette.requests import Request
from starlette.responses import JSONResponse

from issue_fix_agent.clients.github import RepositoryClient
from issue_fix_agent.clients.models.github import IssueDetails
from issue_fix_agent.orchestrator import FixResult, Orchestrator
from issue_fix_agent.webhook.models import WebhookEvent

WEBHOOK_PATH = "/webhook"
HEALTH_PATH = "/health"

EVENT_HEADER = "X-GitHub-Event"
DELIVERY_HEADER = "X-GitHub-Delivery"
SIGNATURE_HEADER = "X-Hub-Signature-256"

OWNER = Annotated[str, Field(description="The owner of the repository.")]
REPO = Annotated[str, Field(description="The name of the repository.")]
ISSUE_NUMBER = Annotated[int, Field(description="The number of the issue to fix.")]
INSTRUCTIONS = Annotated[str, Field(description="What to change, as you would write it in a comment on the issue.")]
PATHS = Annotated[list[str] | None, Field(description="Files the change is likely to touch. Their content is given to the model.")]


class WebhookServer:
    orchestrator: Orchestrator
    logger: Logger

    def __init__(self, orchestrator: Orchestrator, logger: Logger | None = None):
        self.orchestrator = orchestrator
        self.logger = logger or get_logger(name=__name__)

    def register_routes(self, fastmcp: FastMCP[Any]) -> FastMCP[Any]:
        _ = fastmcp.custom_route(path=WEBHOOK_PATH, methods=["POST"])(self.handle_webhook)
        _ = fastmcp.custom_route(path=HEALTH_PATH, methods=["GET"])(self.health)

        return fastmcp

    def register_tools(self, fastmcp: FastMCP[Any]) -> FastMCP[Any]:
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.fix_issue))

        return fastmcp

    async def handle_webhook(self, request: Request) -> JSONResponse:
        event = WebhookEvent(
            body=await request.body(),
            event=request.headers.get(EVENT_HEADER),
            delivery_id=request.headers.get(DELIVERY_HEADER),
            signature=request.headers.get(SIGNATURE_HEADER),
        )

        result = await self.orchestrator.handle_delivery(event=event)

        return JSONResponse(result.body, status_code=result.status_code)

    async def health(self, request: Request) -> JSONResponse:  # noqa: ARG002
        return JSONResponse({"status": "ok"})

    async def fix_issue(self, owner: OWNER, repo: REPO, issue_number: ISSUE_NUMBER, instructions: INSTRUCTIONS, paths: PATHS = None) -> FixResult:
        """Generate a fix for an issue and open it as a pull request, as if the instructions had been left as a comment."""

        self.logger.info(f"Fixing {owner}/{repo}#{issue_number} from a tool call with paths {paths}")

        self.orchestrator.settings.require("app_id", "private_key")

        token: str = await self.orchestrator.authenticator.get_token(owner=owner, repo=repo)

        client: RepositoryClient = self.orchestrator.client_factory(token)

        issue: IssueDetails = await client.get_issue(owner=owner, repo=repo, issue_number=issue_number)

        default_branch: str = await client.get_default_branch(owner=owner, repo=repo)

        return await self.orchestrator.run_fix(
            owner=owner,
            repo=repo,
            issue=issue,
            comment_body=instructions,
            comment_author="mcp",
            paths=paths or [],
            default_branch=default_branch,
        )

import json
import time
from collections.abc import Callable, Sequence
from logging import Logger
from typing import Any, Literal

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, Field, ValidationError

from issue_fix_agent.clients.auth import AppAuthenticator
from issue_fix_agent.clients.github import RepositoryClient
from issue_fix_agent.clients.models.github import IssueDetails
from issue_fix_agent.context import ContextGatherer
from issue_fix_agent.errors import AgentError
from issue_fix_agent.publisher import GitPublisher, PullRequestResult
from issue_fix_agent.sampling.generator import GenerationMetadata, IssueRequest, PatchGenerator
from issue_fix_agent.settings import AgentSettings
from issue_fix_agent.utility import elapsed_ms
from issue_fix_agent.webhook.command import parse_command
from issue_fix_agent.webhook.models import CREATED_ACTION, ISSUE_COMMENT_EVENT, IssueCommentPayload, WebhookEvent
from issue_fix_agent.webhook.signature import verify_signature

DeliveryStatus = Literal["completed", "ignored", "no-op", "forbidden", "error"]

ClientFactory = Callable[[str], RepositoryClient]


class ErrorDetail(BaseModel):
    kind: str = Field(description="The class of the failure.")
    message: str = Field(description="What went wrong.")
    step: str | None = Field(default=None, description="The publishing step that failed, if any.")


class FixResult(BaseModel):
    pull_request: PullRequestResult
    generation: GenerationMetadata


class DeliveryResult(BaseModel):
    """What happened to a delivery, for the HTTP response and for anything reporting back to the thread."""

    status_code: int = Field(description="The HTTP status code of the response.")
    status: DeliveryStatus = Field(description="How the delivery was handled.")
    message: str = Field(description="A human readable summary.")
    delivery_id: str | None = Field(default=None, description="The X-GitHub-Delivery header.")
    elapsed_ms: int = Field(default=0, description="Time spent handling the delivery.")
    pull_request: PullRequestResult | None = Field(default=None, description="The pull request that was opened.")
    generation: GenerationMetadata | None = Field(default=None, description="How the patch was generated.")
    error: ErrorDetail | None = Field(default=None, description="The failure, if the delivery failed.")

    @property
    def body(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True, exclude={"status_code"})


class Orchestrator:
    """Runs a delivery from signature verification through to the pull request."""

    settings: AgentSettings
    authenticator: AppAuthenticator
    context_gatherer: ContextGatherer
    patch_generator: PatchGenerator
    publisher: GitPublisher
    client_factory: ClientFactory
    logger: Logger

    def __init__(
        self,
        settings: AgentSettings,
        authenticator: AppAuthenticator,
        context_gatherer: ContextGatherer,
        patch_generator: PatchGenerator,
        publisher: GitPublisher,
        client_factory: ClientFactory | None = None,
        logger: Logger | None = None,
    ):
        self.settings = settings
        self.authenticator = authenticator
        self.context_gatherer = context_gatherer
        self.patch_generator = patch_generator
        self.publisher = publisher
        self.client_factory = client_factory or (
            lambda token: RepositoryClient.from_token(token=token, timeout=settings.request_timeout)
        )
        self.logger = logger or get_logger(__name__)

    async def run_fix(
        self,
        owner: str,
        repo: str,
        issue: IssueDetails,
        comment_body: str,
        comment_author: str,
        paths: Sequence[str],
        default_branch: str | None = None,
    ) -> FixResult:
        """Authenticate, gather context, generate a patch and publish it as a pull request."""

        self.settings.require("app_id", "private_key")

        token: str = await self.authenticator.get_token(owner=owner, repo=repo)

        client: RepositoryClient = self.client_factory(token)

        context = await self.context_gatherer.gather(client=client, owner=owner, repo=repo, paths=paths)

        request = IssueRequest(
            issue_number=issue.number,
            issue_title=issue.title,
            issue_body=issue.body,
            comment_body=comment_body,
            comment_author=comment_author,
        )

        patch = await self.patch_generator.generate(request=request, context=context)

        pull_request = await self.publisher.publish(
            client=client, owner=owner, repo=repo, plan=patch.plan, default_branch_hint=default_branch
        )

        return FixResult(pull_request=pull_request, generation=patch.metadata)

    async def handle_delivery(self, event: WebhookEvent) -> DeliveryResult:
        start: float = time.monotonic()
        delivery_id: str | None = event.delivery_id

        def result(status_code: int, status: DeliveryStatus, message: str, **kwargs: Any) -> DeliveryResult:  # pyright: ignore[reportAny]
            return DeliveryResult(
                status_code=status_code, status=status, message=message, delivery_id=delivery_id, elapsed_ms=elapsed_ms(start), **kwargs
            )

        try:
            self.settings.require("webhook_secret")
        except AgentError as e:
            self.logger.exception(f"Delivery {delivery_id}: cannot verify deliveries without a webhook secret")
            return result(500, "error", "Webhook secret is not configured.", error=ErrorDetail(**e.to_detail()))

        if not verify_signature(payload=event.body, signature_header=event.signature, secret=self.settings.webhook_secret):
            self.logger.warning(f"Delivery {delivery_id}: invalid or missing signature")
            return result(403, "forbidden", "Invalid signature.")

        if event.event != ISSUE_COMMENT_EVENT:
            self.logger.info(f"Delivery {delivery_id}: ignoring {event.event} event")
            return result(200, "ignored", f"Event {event.event} is not handled.")

        try:
            data: Any = json.loads(event.body)  # pyright: ignore[reportAny]
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self.logger.warning(f"Delivery {delivery_id}: body is not valid JSON")
            return result(400, "error", "Invalid JSON payload.", error=ErrorDetail(kind="InvalidPayload", message=str(e)))

        action: Any = event.action
        if action is None and isinstance(data, dict):
            action = data.get("action")  # pyright: ignore[reportUnknownMemberType]

        if action != CREATED_ACTION:
            self.logger.info(f"Delivery {delivery_id}: ignoring {event.event} action {action}")
            return result(200, "ignored", f"Action {action} is not handled.")

        try:
            payload = IssueCommentPayload.model_validate(data)
        except ValidationError as e:
            self.logger.warning(f"Delivery {delivery_id}: payload is missing required fields")
            return result(400, "error", "Invalid issue_comment payload.", error=ErrorDetail(kind="InvalidPayload", message=str(e)))

        command = parse_command(payload.comment.body, triggers=self.settings.trigger_phrases)

        if not command.activated:
            self.logger.info(f"Delivery {delivery_id}: comment {payload.comment.id} has no trigger phrase")
            return result(200, "no-op", "No trigger phrase in comment.")

        self.logger.info(
            f"Delivery {delivery_id}: fixing {payload.repository.full_name}#{payload.issue.number} "
            f"requested by @{payload.comment.user.login} with paths {command.target_paths}"
        )

        try:
            fix = await self.run_fix(
                owner=payload.owner,
                repo=payload.repo,
                issue=IssueDetails(
                    number=payload.issue.number, title=payload.issue.title, body=payload.issue.body, url=payload.issue.html_url
                ),
                comment_body=payload.comment.body or "",
                comment_author=payload.comment.user.login,
                paths=command.target_paths,
                default_branch=payload.repository.default_branch,
            )
        except AgentError as e:
            self.logger.exception(f"Delivery {delivery_id}: fix for {payload.repository.full_name}#{payload.issue.number} failed")
            return result(500, "error", "Failed to create a fix.", error=ErrorDetail(**e.to_detail()))
        except Exception as e:
            self.logger.exception(f"Delivery {delivery_id}: unexpected error fixing {payload.repository.full_name}#{payload.issue.number}")
            return result(500, "error", "Failed to create a fix.", error=ErrorDetail(kind="InternalError", message=str(e)))

        self.logger.info(f"Delivery {delivery_id}: opened {fix.pull_request.url} in {elapsed_ms(start)}ms")

        return result(
            200,
            "completed",
            f"Opened pull request #{fix.pull_request.number}.",
            pull_request=fix.pull_request,
            generation=fix.generation,
        )

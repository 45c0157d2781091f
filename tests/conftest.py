import json
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, override
from unittest.mock import MagicMock

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from githubkit.exception import RequestFailed as GitHubKitRequestFailed
from githubkit.response import Response as GitHubKitResponse
from pydantic import BaseModel

from issue_fix_agent.clients.auth import AppAuthenticator, InstallationCredential
from issue_fix_agent.clients.github import RepositoryClient
from issue_fix_agent.clients.models.github import GitReference, IssueDetails, PullRequest, RepositoryFile, TreeEntry
from issue_fix_agent.context import ContextGatherer
from issue_fix_agent.errors import ModelRequestError, PullRequestAlreadyExistsError, ReferenceAlreadyExistsError, RequestError
from issue_fix_agent.orchestrator import Orchestrator
from issue_fix_agent.publisher import GitPublisher
from issue_fix_agent.sampling.generator import PatchGenerator
from issue_fix_agent.sampling.handler import ModelClient, ModelResponse
from issue_fix_agent.settings import AgentSettings
from issue_fix_agent.webhook.models import WebhookEvent
from issue_fix_agent.webhook.signature import sign_payload

WEBHOOK_SECRET = "It's a Secret to Everybody"
APP_ID = "123456"
OWNER = "octo-org"
REPO = "octo-repo"
INSTALLATION_TOKEN = "ghs_installation_token"


# Keys


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def pkcs8_private_key(rsa_key: rsa.RSAPrivateKey) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture(scope="session")
def pkcs1_private_key(rsa_key: rsa.RSAPrivateKey) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


# Fakes


class RecordedCall(BaseModel):
    name: str
    kwargs: dict[str, Any]


class FakeRepositoryClient(RepositoryClient):
    """An in-memory repository that records every call made to it."""

    def __init__(
        self,
        branches: dict[str, str] | None = None,
        files: dict[str, str] | None = None,
        issues: dict[int, IssueDetails] | None = None,
        existing_branches: set[str] | None = None,
        failures: dict[str, Exception] | None = None,
        default_branch: str = "main",
    ):
        super().__init__(githubkit_client=MagicMock())
        self.branches: dict[str, str] = {"main": "B1"} if branches is None else branches
        self.files: dict[str, str] = files or {}
        self.issues: dict[int, IssueDetails] = issues or {}
        self.existing_branches: set[str] = existing_branches or set()
        self.failures: dict[str, Exception] = failures or {}
        self.default_branch: str = default_branch
        self.pull_requests: dict[str, PullRequest] = {}
        self.calls: list[RecordedCall] = []
        self._counter: int = 0

    def _record(self, name: str, **kwargs: Any) -> None:
        self.calls.append(RecordedCall(name=name, kwargs=kwargs))
        if failure := self.failures.get(name):
            raise failure

    def _next_sha(self, kind: str) -> str:
        self._counter += 1
        return f"{kind}-sha-{self._counter}"

    def calls_named(self, name: str) -> list[RecordedCall]:
        return [call for call in self.calls if call.name == name]

    @property
    def call_names(self) -> list[str]:
        return [call.name for call in self.calls]

    @override
    async def get_branch(self, owner: str, repo: str, branch: str, error_on_not_found: bool = False) -> GitReference | None:  # pyright: ignore[reportIncompatibleMethodOverride]
        self._record("get_branch", branch=branch)
        if sha := self.branches.get(branch):
            return GitReference(name=f"refs/heads/{branch}", sha=sha)
        return None

    @override
    async def get_file(  # pyright: ignore[reportIncompatibleMethodOverride]
        self, owner: str, repo: str, path: str, ref: str | None = None, error_on_not_found: bool = False
    ) -> RepositoryFile | None:
        self._record("get_file", path=path)
        if (content := self.files.get(path)) is None:
            return None
        return RepositoryFile(path=path, content=content, sha=f"file-sha-{path}")

    @override
    async def get_default_branch(self, owner: str, repo: str) -> str:
        self._record("get_default_branch")
        return self.default_branch

    @override
    async def get_issue(self, owner: str, repo: str, issue_number: int) -> IssueDetails:
        self._record("get_issue", issue_number=issue_number)
        return self.issues[issue_number]

    @override
    async def create_blob(self, owner: str, repo: str, content: str) -> str:
        self._record("create_blob", content=content)
        return self._next_sha("blob")

    @override
    async def create_tree(self, owner: str, repo: str, base_tree: str, entries: list[TreeEntry]) -> str:
        self._record("create_tree", base_tree=base_tree, entries=[entry.model_dump() for entry in entries])
        return self._next_sha("tree")

    @override
    async def create_commit(self, owner: str, repo: str, message: str, tree: str, parents: list[str]) -> str:
        self._record("create_commit", message=message, tree=tree, parents=parents)
        return self._next_sha("commit")

    @override
    async def create_branch(self, owner: str, repo: str, branch: str, sha: str) -> GitReference:
        self._record("create_branch", branch=branch, sha=sha)
        if branch in self.existing_branches:
            raise ReferenceAlreadyExistsError(action="Create branch ref", ref=f"refs/heads/{branch}")
        self.existing_branches.add(branch)
        return GitReference(name=f"refs/heads/{branch}", sha=sha)

    @override
    async def create_pull_request(self, owner: str, repo: str, title: str, body: str, head: str, base: str) -> PullRequest:
        self._record("create_pull_request", title=title, body=body, head=head, base=base)
        if head in self.pull_requests:
            raise PullRequestAlreadyExistsError(action="Create pull request", head=head)
        number = 7 + len(self.pull_requests)
        self.pull_requests[head] = PullRequest(number=number, url=f"https://github.com/{owner}/{repo}/pull/{number}")
        return self.pull_requests[head]

    @override
    async def find_pull_request(self, owner: str, repo: str, head: str, base: str | None = None) -> PullRequest | None:
        self._record("find_pull_request", head=head, base=base)
        return self.pull_requests.get(head)


class FakeModelClient(ModelClient):
    """Returns scripted responses in order. An exception in the script is raised instead."""

    def __init__(self, responses: Sequence[str | ModelRequestError], models: list[str] | None = None):
        self.responses: list[str | ModelRequestError] = list(responses)
        self._models: list[str] = models or ["model-a", "model-b"]
        self.calls: list[dict[str, Any]] = []

    @property
    @override
    def models(self) -> list[str]:
        return self._models

    @override
    async def generate(self, model: str, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> ModelResponse:
        self.calls.append({"model": model, "system_prompt": system_prompt, "user_prompt": user_prompt})

        response = self.responses.pop(0)

        if isinstance(response, ModelRequestError):
            raise response

        return ModelResponse(text=response, model=model, input_tokens=100, output_tokens=50)


def plan_json(
    issue_number: int = 42,
    branch_name: str | None = None,
    commit_title: str = "docs: update notes",
    file_changes: list[dict[str, Any]] | None = None,
) -> str:
    return json.dumps(
        {
            "commit_title": commit_title,
            "branch_name": branch_name or f"bot/fix-issue-{issue_number}",
            "pr_description": f"Fixes #{issue_number}",
            "file_changes": file_changes or [{"path": "notes.md", "operation": "modify", "content": "# Notes\n\nUpdated.\n"}],
        }
    )


# Deliveries


def issue_comment_payload(
    comment_body: str = "@bot fix notes.md", issue_number: int = 42, action: str = "created", default_branch: str = "main"
) -> dict[str, Any]:
    return {
        "action": action,
        "issue": {
            "number": issue_number,
            "title": "Notes are out of date",
            "body": "The notes still describe the old setup.",
            "html_url": f"https://github.com/{OWNER}/{REPO}/issues/{issue_number}",
        },
        "comment": {
            "id": 1001,
            "body": comment_body,
            "user": {"login": "octocat"},
            "html_url": f"https://github.com/{OWNER}/{REPO}/issues/{issue_number}#issuecomment-1001",
        },
        "repository": {
            "name": REPO,
            "full_name": f"{OWNER}/{REPO}",
            "owner": {"login": OWNER},
            "default_branch": default_branch,
        },
    }


def signed_delivery(
    payload: dict[str, Any] | bytes, secret: str = WEBHOOK_SECRET, event: str = "issue_comment", delivery_id: str = "delivery-1"
) -> WebhookEvent:
    body: bytes = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")

    return WebhookEvent(body=body, event=event, delivery_id=delivery_id, signature=sign_payload(body, secret))


# Wiring


@pytest.fixture
def settings(pkcs8_private_key: str) -> AgentSettings:
    return AgentSettings(app_id=APP_ID, private_key=pkcs8_private_key, webhook_secret=WEBHOOK_SECRET, google_api_key="test-key")


@pytest.fixture
def authenticator(settings: AgentSettings) -> AppAuthenticator:
    """An authenticator with a live cached credential, so no exchange is attempted."""

    authenticator = AppAuthenticator(app_id=settings.app_id, private_key=settings.private_key, githubkit_client=MagicMock())

    _ = authenticator.credential_cache.set(
        (OWNER, REPO),
        InstallationCredential(token=INSTALLATION_TOKEN, expires_at=datetime.now(tz=UTC) + timedelta(hours=1)),
    )

    return authenticator


@pytest.fixture
def repository_client() -> FakeRepositoryClient:
    return FakeRepositoryClient(files={"notes.md": "# Notes\n"})


def build_orchestrator(
    settings: AgentSettings, authenticator: AppAuthenticator, repository_client: FakeRepositoryClient, model_client: FakeModelClient
) -> Orchestrator:
    return Orchestrator(
        settings=settings,
        authenticator=authenticator,
        context_gatherer=ContextGatherer(),
        patch_generator=PatchGenerator(model_client=model_client),
        publisher=GitPublisher(),
        client_factory=lambda token: repository_client,
    )


def request_error(action: str = "Create tree") -> RequestError:
    return RequestError(action=action, message="Server Error")


# Snapshots


def handle_exclude_keys(dictionary: dict[str, Any], exclude_keys: list[str] | None = None) -> dict[str, Any]:
    if exclude_keys is None:
        return dictionary
    return {key: value for key, value in dictionary.items() if key not in exclude_keys}


def dump_for_snapshot(basemodel: BaseModel, /, exclude_keys: list[str] | None = None, exclude_none: bool = True) -> dict[str, Any]:
    return handle_exclude_keys(basemodel.model_dump(mode="json", exclude_none=exclude_none), exclude_keys)


def request_failed(status_code: int, path: str, text: str = "") -> GitHubKitRequestFailed:
    raw_response = httpx.Response(status_code, text=text, request=httpx.Request("GET", f"https://api.github.com{path}"))

    return GitHubKitRequestFailed(GitHubKitResponse(raw_response, Any))

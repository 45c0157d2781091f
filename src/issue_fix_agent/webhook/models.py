from pydantic import BaseModel, ConfigDict, Field

ISSUE_COMMENT_EVENT = "issue_comment"
CREATED_ACTION = "created"


class WebhookEvent(BaseModel):
    """A single HTTP delivery, as received."""

    model_config = ConfigDict(frozen=True)

    body: bytes = Field(description="The exact raw request body.")
    event: str | None = Field(default=None, description="The X-GitHub-Event header.")
    action: str | None = Field(default=None, description="The payload action, when the caller already knows it.")
    delivery_id: str | None = Field(default=None, description="The X-GitHub-Delivery header.")
    signature: str | None = Field(default=None, description="The X-Hub-Signature-256 header.")


class User(BaseModel):
    login: str


class Owner(BaseModel):
    login: str


class Issue(BaseModel):
    number: int
    title: str
    body: str | None = None
    html_url: str | None = None


class Comment(BaseModel):
    id: int
    body: str | None = None
    user: User
    html_url: str | None = None


class Repository(BaseModel):
    name: str
    full_name: str
    owner: Owner
    default_branch: str | None = None


class IssueCommentPayload(BaseModel):
    """The parts of an `issue_comment` delivery the agent reads."""

    action: str
    issue: Issue
    comment: Comment
    repository: Repository

    @property
    def owner(self) -> str:
        return self.repository.owner.login

    @property
    def repo(self) -> str:
        return self.repository.name

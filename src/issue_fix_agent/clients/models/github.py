from typing import Literal, Self

from githubkit.versions.v2022_11_28.models import ContentFile as GitHubKitContentFile
from githubkit.versions.v2022_11_28.models import GitRef as GitHubKitGitRef
from githubkit.versions.v2022_11_28.models import Issue as GitHubKitIssue
from githubkit.versions.v2022_11_28.models import PullRequest as GitHubKitPullRequest
from pydantic import BaseModel, ConfigDict, Field

from issue_fix_agent.utility import decode_content

REGULAR_FILE_MODE = "100644"


class RepositoryFile(BaseModel):
    """A file read from the repository."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(description="The path of the file.")
    content: str = Field(description="The decoded content of the file.")
    sha: str = Field(description="The blob id of the file.")

    @classmethod
    def from_content_file(cls, content_file: GitHubKitContentFile) -> Self:
        return cls(path=content_file.path, content=decode_content(content_file.content), sha=content_file.sha)


class IssueDetails(BaseModel):
    """The issue a fix is requested for."""

    number: int = Field(description="The number of the issue.")
    title: str = Field(description="The title of the issue.")
    body: str | None = Field(default=None, description="The body of the issue.")
    url: str | None = Field(default=None, description="The URL of the issue.")

    @classmethod
    def from_issue(cls, issue: GitHubKitIssue) -> Self:
        return cls(number=issue.number, title=issue.title, body=issue.body or None, url=issue.html_url)


class TreeEntry(BaseModel):
    """An entry overlaid onto the base tree. A null sha removes the path."""

    model_config = ConfigDict(frozen=True)

    path: str
    mode: Literal["100644"] = REGULAR_FILE_MODE
    type: Literal["blob"] = "blob"
    sha: str | None


class GitReference(BaseModel):
    """A branch reference and the commit it points at."""

    name: str = Field(description="The full name of the reference.")
    sha: str = Field(description="The SHA the reference points at.")

    @classmethod
    def from_git_ref(cls, git_ref: GitHubKitGitRef) -> Self:
        return cls(name=git_ref.ref, sha=git_ref.object_.sha)


class PullRequest(BaseModel):
    """A pull request opened on the repository."""

    model_config = ConfigDict(frozen=True)

    number: int = Field(description="The number of the pull request.")
    url: str = Field(description="The URL of the pull request.")

    @classmethod
    def from_pull_request(cls, pull_request: GitHubKitPullRequest) -> Self:
        return cls(number=pull_request.number, url=pull_request.html_url)

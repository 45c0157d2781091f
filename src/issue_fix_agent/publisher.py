"""Publishes a patch plan as a branch and a pull request, one git object at a time.

The objects are created strictly in order: base commit, blobs, tree, commit, ref, and finally the pull request.
Each stage needs what the previous stage produced. A failure stops the sequence and names the stage that failed.
Objects created before the failure are left unreferenced.
"""

import asyncio
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from logging import Logger
from typing import Literal

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, ConfigDict, Field

from issue_fix_agent.clients.github import RepositoryClient
from issue_fix_agent.clients.models.github import PullRequest, TreeEntry
from issue_fix_agent.errors import AgentError, GitOperationError, PullRequestAlreadyExistsError, ReferenceAlreadyExistsError
from issue_fix_agent.sampling.validation import FileChange, PatchPlan

FALLBACK_BRANCHES: tuple[str, ...] = ("main", "master")

PublishStep = Literal["base-commit", "blobs", "tree", "commit", "ref", "pull-request"]


class BaseCommit(BaseModel):
    model_config = ConfigDict(frozen=True)

    branch: str = Field(description="The branch the change is based on.")
    sha: str = Field(description="The tip commit of that branch.")


class GitObjectChain(BaseModel):
    """The git objects created for a patch, in creation order."""

    model_config = ConfigDict(frozen=True)

    base_branch: str
    base_commit_sha: str
    blobs: list[TreeEntry]
    tree_sha: str
    commit_sha: str


class PullRequestResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: int = Field(description="The number of the pull request.")
    url: str = Field(description="The URL of the pull request.")
    commit_sha: str = Field(description="The commit the branch was created at.")
    branch_name: str = Field(description="The branch the pull request is opened from.")
    base_branch: str = Field(description="The branch the pull request is opened against.")
    branch_existed: bool = Field(default=False, description="Whether the branch already existed and was reused.")


@contextmanager
def git_step(step: PublishStep) -> Iterator[None]:
    """Report any request failure inside the block as a failure of the step."""

    try:
        yield
    except GitOperationError:
        raise
    except AgentError as e:
        raise GitOperationError(step=step, message=str(e)) from e


def branch_candidates(override: str | None, default_branch_hint: str | None) -> list[str]:
    """The branches to try as the base, in order."""

    if override:
        return [override]

    candidates: list[str] = []

    for branch in (default_branch_hint, *FALLBACK_BRANCHES):
        if branch and branch not in candidates:
            candidates.append(branch)

    return candidates


class GitPublisher:
    default_branch: str | None
    logger: Logger

    def __init__(self, default_branch: str | None = None, logger: Logger | None = None):
        self.default_branch = default_branch
        self.logger = logger or get_logger(__name__)

    async def get_base_commit(self, client: RepositoryClient, owner: str, repo: str, default_branch_hint: str | None = None) -> BaseCommit:
        candidates: list[str] = branch_candidates(override=self.default_branch, default_branch_hint=default_branch_hint)

        with git_step("base-commit"):
            for branch in candidates:
                if git_ref := await client.get_branch(owner=owner, repo=repo, branch=branch):
                    self.logger.info(f"Base commit for {owner}/{repo} is {git_ref.sha} on {branch}")
                    return BaseCommit(branch=branch, sha=git_ref.sha)

                self.logger.warning(f"Branch {branch} not found in {owner}/{repo}")

        raise GitOperationError(step="base-commit", message=f"None of the branches {', '.join(candidates)} exist.")

    async def create_blobs(self, client: RepositoryClient, owner: str, repo: str, file_changes: Sequence[FileChange]) -> list[TreeEntry]:
        """Create a blob for every add or modify. A delete becomes an entry without a sha."""

        async def to_entry(change: FileChange) -> TreeEntry:
            if change.operation == "delete" or change.content is None:
                return TreeEntry(path=change.path, sha=None)

            return TreeEntry(path=change.path, sha=await client.create_blob(owner=owner, repo=repo, content=change.content))

        with git_step("blobs"):
            entries: list[TreeEntry] = await asyncio.gather(*[to_entry(change) for change in file_changes])

        self.logger.info(f"Prepared {len(entries)} tree entries for {owner}/{repo}")

        return entries

    async def create_tree(self, client: RepositoryClient, owner: str, repo: str, base: BaseCommit, entries: list[TreeEntry]) -> str:
        with git_step("tree"):
            # A commit sha is accepted as the base tree and resolves to that commit's tree
            tree_sha = await client.create_tree(owner=owner, repo=repo, base_tree=base.sha, entries=entries)

        self.logger.info(f"Created tree {tree_sha} in {owner}/{repo}")

        return tree_sha

    async def create_commit(self, client: RepositoryClient, owner: str, repo: str, base: BaseCommit, tree_sha: str, message: str) -> str:
        with git_step("commit"):
            commit_sha = await client.create_commit(owner=owner, repo=repo, message=message, tree=tree_sha, parents=[base.sha])

        self.logger.info(f"Created commit {commit_sha} in {owner}/{repo}")

        return commit_sha

    async def build_chain(
        self, client: RepositoryClient, owner: str, repo: str, plan: PatchPlan, default_branch_hint: str | None = None
    ) -> GitObjectChain:
        """Create the base, blobs, tree and commit for the plan."""

        base = await self.get_base_commit(client=client, owner=owner, repo=repo, default_branch_hint=default_branch_hint)
        entries = await self.create_blobs(client=client, owner=owner, repo=repo, file_changes=plan.file_changes)
        tree_sha = await self.create_tree(client=client, owner=owner, repo=repo, base=base, entries=entries)
        commit_sha = await self.create_commit(client=client, owner=owner, repo=repo, base=base, tree_sha=tree_sha, message=plan.commit_title)

        return GitObjectChain(base_branch=base.branch, base_commit_sha=base.sha, blobs=entries, tree_sha=tree_sha, commit_sha=commit_sha)

    async def create_branch(self, client: RepositoryClient, owner: str, repo: str, branch: str, commit_sha: str) -> bool:
        """Point a new branch at the commit. Returns False if the branch already existed."""

        with git_step("ref"):
            try:
                _ = await client.create_branch(owner=owner, repo=repo, branch=branch, sha=commit_sha)
            except ReferenceAlreadyExistsError:
                self.logger.warning(f"Branch {branch} already exists in {owner}/{repo}, opening the pull request from it")
                return False

        self.logger.info(f"Created branch {branch} at {commit_sha} in {owner}/{repo}")

        return True

    async def open_pull_request(self, client: RepositoryClient, owner: str, repo: str, plan: PatchPlan, base_branch: str) -> PullRequest:
        """Open the pull request, or return the open one a previous delivery already created from the branch."""

        with git_step("pull-request"):
            try:
                return await client.create_pull_request(
                    owner=owner, repo=repo, title=plan.commit_title, body=plan.pr_description, head=plan.branch_name, base=base_branch
                )
            except PullRequestAlreadyExistsError:
                self.logger.warning(f"A pull request from {plan.branch_name} already exists in {owner}/{repo}, returning it")

                existing = await client.find_pull_request(owner=owner, repo=repo, head=plan.branch_name, base=base_branch)

        if existing is None:
            raise GitOperationError(step="pull-request", message=f"A pull request from {plan.branch_name} exists but could not be found.")

        return existing

    async def publish(
        self, client: RepositoryClient, owner: str, repo: str, plan: PatchPlan, default_branch_hint: str | None = None
    ) -> PullRequestResult:
        """Publish the plan as a new branch and a pull request against the base branch.

        Raises:
            GitOperationError: If any step fails. The error names the step.
        """

        chain = await self.build_chain(client=client, owner=owner, repo=repo, plan=plan, default_branch_hint=default_branch_hint)

        created = await self.create_branch(client=client, owner=owner, repo=repo, branch=plan.branch_name, commit_sha=chain.commit_sha)

        pull_request = await self.open_pull_request(client=client, owner=owner, repo=repo, plan=plan, base_branch=chain.base_branch)

        self.logger.info(f"Opened pull request #{pull_request.number} from {plan.branch_name} into {chain.base_branch}: {pull_request.url}")

        return PullRequestResult(
            number=pull_request.number,
            url=pull_request.url,
            commit_sha=chain.commit_sha,
            branch_name=plan.branch_name,
            base_branch=chain.base_branch,
            branch_existed=not created,
        )

from collections.abc import Awaitable, Callable
from logging import Logger, getLogger
from typing import Any, Literal, overload

from githubkit import GitHub as GitHubKit
from githubkit.auth.token import TokenAuthStrategy
from githubkit.exception import GitHubException as GitHubKitGitHubException
from githubkit.exception import RequestFailed as GitHubKitRequestFailed
from githubkit.response import Response as GitHubKitResponse
from githubkit.versions.v2022_11_28.models import ContentFile as GitHubKitContentFile

from issue_fix_agent.clients.models.github import GitReference, IssueDetails, PullRequest, RepositoryFile, TreeEntry
from issue_fix_agent.errors import PullRequestAlreadyExistsError, ReferenceAlreadyExistsError, RequestError, ResourceNotFoundError
from issue_fix_agent.settings import DEFAULT_REQUEST_TIMEOUT
from issue_fix_agent.utility import encode_content, extract_response

NOT_FOUND_ERROR = 404
UNPROCESSABLE_ERROR = 422

REFERENCE_EXISTS_MESSAGE = "Reference already exists"
PULL_REQUEST_EXISTS_MESSAGE = "A pull request already exists"


def get_githubkit_client(token: str, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> GitHubKit[Any]:
    # Failures surface immediately, only the patch generator retries
    return GitHubKit[TokenAuthStrategy](auth=TokenAuthStrategy(token=token), timeout=timeout, auto_retry=False)


class RepositoryClient:
    """Reads repository content and writes git objects using an installation token."""

    githubkit_client: GitHubKit[Any]
    logger: Logger

    log_requests: bool
    log_responses: bool
    log_on_error: bool

    def __init__(
        self,
        githubkit_client: GitHubKit[Any],
        logger: Logger | None = None,
        log_requests: bool = True,
        log_responses: bool = False,
        log_on_error: bool = True,
    ):
        self.githubkit_client = githubkit_client
        self.logger = logger or getLogger(__name__)
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.log_on_error = log_on_error

    @classmethod
    def from_token(cls, token: str, timeout: float = DEFAULT_REQUEST_TIMEOUT, logger: Logger | None = None) -> "RepositoryClient":
        return cls(githubkit_client=get_githubkit_client(token=token, timeout=timeout), logger=logger)

    def _get_loggers(
        self, log_request: bool | None = None, log_response: bool | None = None, log_on_error: bool | None = None
    ) -> tuple[Callable[[str], Any], Callable[[str], Any], Callable[[BaseException | str], Any]]:
        request_logger = self.logger.info if log_request or self.log_requests else self.logger.debug
        response_logger = self.logger.info if log_response or self.log_responses else self.logger.debug
        error_logger = self.logger.exception if log_on_error or self.log_on_error else self.logger.debug
        return request_logger, response_logger, error_logger

    @overload
    async def _perform_rest_request[T](
        self,
        action: str,
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: Literal[False] = False,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[T]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T | None: ...

    @overload
    async def _perform_rest_request[T](
        self,
        action: str,
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: Literal[True] = True,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[T]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T: ...

    async def _perform_rest_request[T](
        self,
        action: str,
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: bool | None = None,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[T]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T | None:
        """Perform a request and extract the response.

        Args:
            action: The action being performed.
            log_request: Whether to log the request.
            log_response: Whether to log the response.
            log_on_error: Whether to log on error.
            error_on_not_found: Whether to raise an error if the resource is not found.

        Raises:
            ResourceNotFoundError: If the resource is not found and error_on_not_found is True.
            ReferenceAlreadyExistsError: If a ref being created already exists.
            PullRequestAlreadyExistsError: If an open pull request from the head branch already exists.
            RequestError: If the request fails.
        """

        request_logger, response_logger, error_logger = self._get_loggers(
            log_request=log_request, log_response=log_response, log_on_error=log_on_error
        )

        request_logger(f"Performing {action} with kwargs {_loggable(request_args)}")

        try:
            response: GitHubKitResponse[T] = await method(**request_args)
        except GitHubKitRequestFailed as e:
            if e.response.status_code == NOT_FOUND_ERROR:
                if error_on_not_found:
                    raise ResourceNotFoundError(action=action, resource=e.request.url.path) from e

                return None

            if e.response.status_code == UNPROCESSABLE_ERROR and REFERENCE_EXISTS_MESSAGE in e.response.text:
                raise ReferenceAlreadyExistsError(action=action, ref=str(request_args.get("ref"))) from e

            if e.response.status_code == UNPROCESSABLE_ERROR and PULL_REQUEST_EXISTS_MESSAGE in e.response.text:
                raise PullRequestAlreadyExistsError(action=action, head=str(request_args.get("head"))) from e

            error_logger(f"RequestFailed error performing {action} with kwargs {_loggable(request_args)}: {e}")

            raise RequestError(action=action, message=str(e)) from e
        except GitHubKitGitHubException as e:
            error_logger(f"Error performing {action} with kwargs {_loggable(request_args)}: {e}")

            raise RequestError(action=action, message=str(e)) from e

        extracted_response = extract_response(response)

        response_logger(f"Extracted response for {action}: {extracted_response}")

        return extracted_response

    @overload
    async def get_branch(self, owner: str, repo: str, branch: str, error_on_not_found: Literal[False] = False) -> GitReference | None: ...

    @overload
    async def get_branch(self, owner: str, repo: str, branch: str, error_on_not_found: Literal[True] = True) -> GitReference: ...

    async def get_branch(self, owner: str, repo: str, branch: str, error_on_not_found: bool = False) -> GitReference | None:
        """Get the ref of a branch, which points at its tip commit."""

        if git_ref := await self._perform_rest_request(
            action="Get branch ref",
            error_on_not_found=error_on_not_found,
            method=self.githubkit_client.rest.git.async_get_ref,
            owner=owner,
            repo=repo,
            ref=f"heads/{branch}",
        ):
            return GitReference.from_git_ref(git_ref=git_ref)

        return None

    @overload
    async def get_file(
        self, owner: str, repo: str, path: str, ref: str | None = None, error_on_not_found: Literal[False] = False
    ) -> RepositoryFile | None: ...

    @overload
    async def get_file(
        self, owner: str, repo: str, path: str, ref: str | None = None, error_on_not_found: Literal[True] = True
    ) -> RepositoryFile: ...

    async def get_file(
        self, owner: str, repo: str, path: str, ref: str | None = None, error_on_not_found: bool = False
    ) -> RepositoryFile | None:
        """Get a file from a repository.

        Args:
            owner: The owner of the repository.
            repo: The name of the repository.
            path: The path of the file.
            ref: The branch, tag or commit to read from. If not provided, the default branch is used.
            error_on_not_found: Whether to raise an error if the file is not found.

        A path that names a directory, symlink or submodule, or a file that is not UTF-8 text, is treated as not found.
        """

        request_args: dict[str, Any] = {"owner": owner, "repo": repo, "path": path}
        if ref is not None:
            request_args["ref"] = ref

        file = await self._perform_rest_request(
            action="Get file",
            error_on_not_found=error_on_not_found,
            method=self.githubkit_client.rest.repos.async_get_content,
            **request_args,
        )

        if file is None:
            return None

        if not isinstance(file, GitHubKitContentFile) or file.content is None:
            if error_on_not_found:
                raise ResourceNotFoundError(action="Get file", resource=path, extra_info={"reason": "not a file"})
            return None

        try:
            return RepositoryFile.from_content_file(content_file=file)
        except UnicodeDecodeError as e:
            self.logger.warning(f"File {path} in {owner}/{repo} is not UTF-8 text, treating it as not found")
            if error_on_not_found:
                raise ResourceNotFoundError(action="Get file", resource=path, extra_info={"reason": "not UTF-8 text"}) from e
            return None

    async def get_default_branch(self, owner: str, repo: str) -> str:
        """Get the name of the repository's default branch."""

        repository = await self._perform_rest_request(
            action="Get repository",
            error_on_not_found=True,
            method=self.githubkit_client.rest.repos.async_get,
            owner=owner,
            repo=repo,
        )

        return repository.default_branch

    async def get_issue(self, owner: str, repo: str, issue_number: int) -> IssueDetails:
        """Get an issue."""

        issue = await self._perform_rest_request(
            action="Get issue",
            error_on_not_found=True,
            method=self.githubkit_client.rest.issues.async_get,
            owner=owner,
            repo=repo,
            issue_number=issue_number,
        )

        return IssueDetails.from_issue(issue=issue)

    async def create_blob(self, owner: str, repo: str, content: str) -> str:
        """Create a blob from UTF-8 text and return its sha."""

        blob = await self._perform_rest_request(
            action="Create blob",
            log_request=False,
            error_on_not_found=True,
            method=self.githubkit_client.rest.git.async_create_blob,
            owner=owner,
            repo=repo,
            content=encode_content(content),
            encoding="base64",
        )

        return blob.sha

    async def create_tree(self, owner: str, repo: str, base_tree: str, entries: list[TreeEntry]) -> str:
        """Create a tree that overlays the entries onto the base tree and return its sha."""

        tree = await self._perform_rest_request(
            action="Create tree",
            error_on_not_found=True,
            method=self.githubkit_client.rest.git.async_create_tree,
            owner=owner,
            repo=repo,
            base_tree=base_tree,
            tree=[entry.model_dump() for entry in entries],
        )

        return tree.sha

    async def create_commit(self, owner: str, repo: str, message: str, tree: str, parents: list[str]) -> str:
        """Create a commit and return its sha."""

        commit = await self._perform_rest_request(
            action="Create commit",
            error_on_not_found=True,
            method=self.githubkit_client.rest.git.async_create_commit,
            owner=owner,
            repo=repo,
            message=message,
            tree=tree,
            parents=parents,
        )

        return commit.sha

    async def create_branch(self, owner: str, repo: str, branch: str, sha: str) -> GitReference:
        """Create a branch pointing at the commit.

        Raises:
            ReferenceAlreadyExistsError: If the branch already exists.
        """

        git_ref = await self._perform_rest_request(
            action="Create branch ref",
            error_on_not_found=True,
            method=self.githubkit_client.rest.git.async_create_ref,
            owner=owner,
            repo=repo,
            ref=f"refs/heads/{branch}",
            sha=sha,
        )

        return GitReference.from_git_ref(git_ref=git_ref)

    async def create_pull_request(self, owner: str, repo: str, title: str, body: str, head: str, base: str) -> PullRequest:
        """Open a pull request from head into base.

        Raises:
            PullRequestAlreadyExistsError: If an open pull request from head already exists.
        """

        pull_request = await self._perform_rest_request(
            action="Create pull request",
            error_on_not_found=True,
            method=self.githubkit_client.rest.pulls.async_create,
            owner=owner,
            repo=repo,
            title=title,
            body=body,
            head=head,
            base=base,
        )

        return PullRequest.from_pull_request(pull_request=pull_request)

    async def find_pull_request(self, owner: str, repo: str, head: str, base: str | None = None) -> PullRequest | None:
        """Find the open pull request from a branch of this repository, if there is one."""

        request_args: dict[str, Any] = {"owner": owner, "repo": repo, "head": f"{owner}:{head}", "state": "open"}
        if base is not None:
            request_args["base"] = base

        pull_requests = await self._perform_rest_request(
            action="List pull requests",
            error_on_not_found=True,
            method=self.githubkit_client.rest.pulls.async_list,
            **request_args,
        )

        if not pull_requests:
            return None

        return PullRequest.from_pull_request(pull_request=pull_requests[0])


def _loggable(request_args: dict[str, Any]) -> dict[str, Any]:
    # Blob content can be large, log its size instead
    return {key: f"<{len(value)} chars>" if key == "content" and isinstance(value, str) else value for key, value in request_args.items()}

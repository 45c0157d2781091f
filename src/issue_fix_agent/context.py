import asyncio
from collections.abc import Sequence

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, Field

from issue_fix_agent.clients.cache import TTLCache
from issue_fix_agent.clients.github import RepositoryClient
from issue_fix_agent.clients.models.github import RepositoryFile
from issue_fix_agent.settings import DEFAULT_STANDARDS_PATH

logger = get_logger(__name__)

STANDARDS_TTL_SECONDS = 10 * 60


def new_standards_cache() -> TTLCache[tuple[str, str], str | None]:
    return TTLCache(ttl=STANDARDS_TTL_SECONDS)


class GatheredContext(BaseModel):
    """The repository context handed to the patch generator."""

    standards: str | None = Field(default=None, description="The coding standards document, if the repository has one.")
    files: list[RepositoryFile] = Field(default_factory=list, description="The requested files that exist, in request order.")


class ContextGatherer:
    """Fetches the standards document and the files named in the command."""

    standards_cache: TTLCache[tuple[str, str], str | None]
    standards_path: str

    def __init__(self, standards_cache: TTLCache[tuple[str, str], str | None] | None = None, standards_path: str = DEFAULT_STANDARDS_PATH):
        self.standards_cache = standards_cache or new_standards_cache()
        self.standards_path = standards_path

    async def get_standards(self, client: RepositoryClient, owner: str, repo: str, ref: str | None = None) -> str | None:
        """Get the standards document from the default branch. Absence is cached like content."""

        async def refresh() -> tuple[str | None, None]:
            file = await client.get_file(owner=owner, repo=repo, path=self.standards_path, ref=ref)

            if file is None:
                logger.info(f"No {self.standards_path} in {owner}/{repo}, continuing without coding standards")
                return None, None

            logger.info(f"Loaded {self.standards_path} from {owner}/{repo} ({len(file.content)} chars)")
            return file.content, None

        return await self.standards_cache.get_or_refresh((owner, repo), refresh)

    async def get_target_files(
        self, client: RepositoryClient, owner: str, repo: str, paths: Sequence[str], ref: str | None = None
    ) -> list[RepositoryFile]:
        """Fetch every path concurrently, dropping the ones that do not exist."""

        if not paths:
            return []

        results: list[RepositoryFile | None] = await asyncio.gather(
            *[client.get_file(owner=owner, repo=repo, path=path, ref=ref) for path in paths]
        )

        files: list[RepositoryFile] = []

        for path, file in zip(paths, results, strict=True):
            if file is None:
                logger.warning(f"Requested file {path} was not found in {owner}/{repo}, skipping it")
                continue
            files.append(file)

        return files

    async def gather(
        self, client: RepositoryClient, owner: str, repo: str, paths: Sequence[str], ref: str | None = None
    ) -> GatheredContext:
        standards, files = await asyncio.gather(
            self.get_standards(client=client, owner=owner, repo=repo, ref=ref),
            self.get_target_files(client=client, owner=owner, repo=repo, paths=paths, ref=ref),
        )

        logger.info(f"Gathered context for {owner}/{repo}: standards={'yes' if standards else 'no'}, files={len(files)}/{len(paths)}")

        return GatheredContext(standards=standards, files=files)

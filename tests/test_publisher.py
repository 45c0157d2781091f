import pytest
from inline_snapshot import snapshot

from issue_fix_agent.errors import GitOperationError, PullRequestAlreadyExistsError
from issue_fix_agent.publisher import GitPublisher, PullRequestResult, branch_candidates
from issue_fix_agent.sampling.validation import FileChange, PatchPlan
from tests.conftest import OWNER, REPO, FakeRepositoryClient, dump_for_snapshot, request_error


def patch_plan(*file_changes: FileChange) -> PatchPlan:
    return PatchPlan(
        commit_title="fix: add a.txt",
        branch_name="bot/fix-issue-42",
        pr_description="Fixes #42",
        file_changes=list(file_changes) or [FileChange(path="a.txt", operation="add", content="hello\n")],
    )


def test_branch_candidates():
    assert branch_candidates(override=None, default_branch_hint=None) == ["main", "master"]
    assert branch_candidates(override=None, default_branch_hint="develop") == ["develop", "main", "master"]
    assert branch_candidates(override=None, default_branch_hint="master") == ["master", "main"]
    assert branch_candidates(override="release", default_branch_hint="develop") == ["release"]


async def test_publish():
    client = FakeRepositoryClient()

    result: PullRequestResult = await GitPublisher().publish(client=client, owner=OWNER, repo=REPO, plan=patch_plan())

    assert dump_for_snapshot(result) == snapshot(
        {
            "number": 7,
            "url": "https://github.com/octo-org/octo-repo/pull/7",
            "commit_sha": "commit-sha-3",
            "branch_name": "bot/fix-issue-42",
            "base_branch": "main",
            "branch_existed": False,
        }
    )

    assert client.call_names == ["get_branch", "create_blob", "create_tree", "create_commit", "create_branch", "create_pull_request"]

    assert [call.kwargs for call in client.calls[1:]] == snapshot(
        [
            {"content": "hello\n"},
            {"base_tree": "B1", "entries": [{"path": "a.txt", "mode": "100644", "type": "blob", "sha": "blob-sha-1"}]},
            {"message": "fix: add a.txt", "tree": "tree-sha-2", "parents": ["B1"]},
            {"branch": "bot/fix-issue-42", "sha": "commit-sha-3"},
            {"title": "fix: add a.txt", "body": "Fixes #42", "head": "bot/fix-issue-42", "base": "main"},
        ]
    )


async def test_publish_delete_creates_no_blob():
    client = FakeRepositoryClient()

    plan = patch_plan(
        FileChange(path="old.txt", operation="delete", content="ignored"),
        FileChange(path="src/app.py", operation="modify", content="print('hi')\n"),
    )

    _ = await GitPublisher().publish(client=client, owner=OWNER, repo=REPO, plan=plan)

    assert [call.kwargs for call in client.calls_named("create_blob")] == [{"content": "print('hi')\n"}]
    assert client.calls_named("create_tree")[0].kwargs["entries"] == snapshot(
        [
            {"path": "old.txt", "mode": "100644", "type": "blob", "sha": None},
            {"path": "src/app.py", "mode": "100644", "type": "blob", "sha": "blob-sha-1"},
        ]
    )


class TestBaseCommit:
    async def test_falls_back_to_master(self):
        client = FakeRepositoryClient(branches={"master": "M1"})

        result = await GitPublisher().publish(client=client, owner=OWNER, repo=REPO, plan=patch_plan())

        assert [call.kwargs["branch"] for call in client.calls_named("get_branch")] == ["main", "master"]
        assert client.calls_named("create_tree")[0].kwargs["base_tree"] == "M1"
        assert client.calls_named("create_commit")[0].kwargs["parents"] == ["M1"]
        assert result.base_branch == "master"
        assert client.calls_named("create_pull_request")[0].kwargs["base"] == "master"

    async def test_hint_is_tried_first(self):
        client = FakeRepositoryClient(branches={"main": "B1", "develop": "D1"})

        base = await GitPublisher().get_base_commit(client=client, owner=OWNER, repo=REPO, default_branch_hint="develop")

        assert base.branch == "develop"
        assert base.sha == "D1"

    async def test_override(self):
        client = FakeRepositoryClient(branches={"main": "B1", "release": "R1"})

        base = await GitPublisher(default_branch="release").get_base_commit(
            client=client, owner=OWNER, repo=REPO, default_branch_hint="main"
        )

        assert base.sha == "R1"
        assert [call.kwargs["branch"] for call in client.calls_named("get_branch")] == ["release"]

    async def test_no_branch(self):
        client = FakeRepositoryClient(branches={})

        with pytest.raises(GitOperationError, match="None of the branches main, master exist") as exc_info:
            _ = await GitPublisher().publish(client=client, owner=OWNER, repo=REPO, plan=patch_plan())

        assert exc_info.value.step == "base-commit"
        assert client.call_names == ["get_branch", "get_branch"]


@pytest.mark.parametrize(
    argnames=("failing_call", "step"),
    argvalues=[
        ("get_branch", "base-commit"),
        ("create_blob", "blobs"),
        ("create_tree", "tree"),
        ("create_commit", "commit"),
        ("create_branch", "ref"),
        ("create_pull_request", "pull-request"),
    ],
)
async def test_failure_names_the_step(failing_call: str, step: str):
    client = FakeRepositoryClient(failures={failing_call: request_error(action=failing_call)})

    with pytest.raises(GitOperationError) as exc_info:
        _ = await GitPublisher().publish(client=client, owner=OWNER, repo=REPO, plan=patch_plan())

    assert exc_info.value.step == step
    assert exc_info.value.to_detail()["step"] == step
    assert client.call_names[-1] == failing_call


async def test_existing_branch_still_opens_pull_request():
    client = FakeRepositoryClient(existing_branches={"bot/fix-issue-42"})

    result = await GitPublisher().publish(client=client, owner=OWNER, repo=REPO, plan=patch_plan())

    assert result.branch_existed is True
    assert client.calls_named("create_pull_request")[0].kwargs["head"] == "bot/fix-issue-42"


async def test_republish_returns_open_pull_request():
    client = FakeRepositoryClient()
    publisher = GitPublisher()

    first = await publisher.publish(client=client, owner=OWNER, repo=REPO, plan=patch_plan())
    second = await publisher.publish(client=client, owner=OWNER, repo=REPO, plan=patch_plan())

    assert second.branch_existed is True
    assert (second.number, second.url) == (first.number, first.url)
    assert client.calls_named("find_pull_request")[0].kwargs == {"head": "bot/fix-issue-42", "base": "main"}


async def test_existing_pull_request_that_cannot_be_found():
    client = FakeRepositoryClient(
        failures={"create_pull_request": PullRequestAlreadyExistsError(action="Create pull request", head="bot/fix-issue-42")}
    )

    with pytest.raises(GitOperationError, match="exists but could not be found") as exc_info:
        _ = await GitPublisher().publish(client=client, owner=OWNER, repo=REPO, plan=patch_plan())

    assert exc_info.value.step == "pull-request"
    assert client.call_names[-1] == "find_pull_request"

import re
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from issue_fix_agent.settings import DEFAULT_BRANCH_PREFIX

MAX_COMMIT_TITLE_LENGTH = 72

REQUIRED_FIELDS: tuple[str, ...] = ("commit_title", "branch_name", "pr_description", "file_changes")
OPERATIONS: tuple[str, ...] = ("add", "modify", "delete")

Operation = Literal["add", "modify", "delete"]


def branch_name_for_issue(issue_number: int, branch_prefix: str = DEFAULT_BRANCH_PREFIX) -> str:
    return f"{branch_prefix}/fix-issue-{issue_number}"


def branch_name_pattern(branch_prefix: str = DEFAULT_BRANCH_PREFIX) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(branch_prefix)}/fix-issue-[0-9]+$")


class FileChange(BaseModel):
    """A whole-file change. Deletes never carry content."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(description="The path of the file, relative to the repository root.")
    operation: Operation = Field(description="Whether the file is added, modified or deleted.")
    content: str | None = Field(default=None, description="The complete new content of the file (UTF-8).")

    @model_validator(mode="before")
    @classmethod
    def drop_delete_content(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("operation") == "delete":
            return {**data, "content": None}
        return data

    @model_validator(mode="after")
    def require_content(self) -> Self:
        if self.operation != "delete" and self.content is None:
            msg = f"{self.operation} of {self.path} requires content"
            raise ValueError(msg)
        return self


class PatchPlan(BaseModel):
    """The change the model proposes for an issue."""

    model_config = ConfigDict(frozen=True)

    commit_title: str = Field(max_length=MAX_COMMIT_TITLE_LENGTH, description="The commit title, in conventional commit form.")
    branch_name: str = Field(description="The branch to publish to, `<prefix>/fix-issue-<number>`.")
    pr_description: str = Field(description="The pull request description, in Markdown.")
    file_changes: list[FileChange] = Field(min_length=1, description="The files to add, modify or delete.")


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _validate_file_change(index: int, change: Any) -> list[str]:
    label = f"file_changes[{index}]"

    if not isinstance(change, dict):
        return [f"{label} must be an object, got {_type_name(change)}"]

    errors: list[str] = []

    path = change.get("path")
    if not isinstance(path, str) or not path.strip():
        errors.append(f"{label}.path must be a non-empty string")

    operation = change.get("operation")
    if operation not in OPERATIONS:
        errors.append(f"{label}.operation must be one of {', '.join(OPERATIONS)}, got {operation!r}")

    content = change.get("content")
    if operation == "delete":
        if content is not None and not isinstance(content, str):
            errors.append(f"{label}.content must be a string or null, got {_type_name(content)}")
    elif not isinstance(content, str):
        errors.append(f"{label}.content must be a string, got {_type_name(content)}")

    return errors


def validate_patch_plan(data: Any, issue_number: int, branch_prefix: str = DEFAULT_BRANCH_PREFIX) -> list[str]:
    """Check a decoded model response field by field.

    Returns:
        Every violation found, or an empty list if the response is a valid patch plan.
    """

    if not isinstance(data, dict):
        return [f"Response must be a JSON object, got {_type_name(data)}"]

    errors: list[str] = [f"Missing required field: {field}" for field in REQUIRED_FIELDS if field not in data]

    commit_title = data.get("commit_title")
    if "commit_title" in data:
        if not isinstance(commit_title, str) or not commit_title.strip():
            errors.append("commit_title must be a non-empty string")
        elif len(commit_title) > MAX_COMMIT_TITLE_LENGTH:
            errors.append(f"commit_title must be at most {MAX_COMMIT_TITLE_LENGTH} characters, got {len(commit_title)}")

    branch_name = data.get("branch_name")
    if "branch_name" in data:
        expected_branch_name = branch_name_for_issue(issue_number=issue_number, branch_prefix=branch_prefix)
        if not isinstance(branch_name, str):
            errors.append(f"branch_name must be a string, got {_type_name(branch_name)}")
        elif not branch_name_pattern(branch_prefix).match(branch_name):
            errors.append(f"branch_name {branch_name!r} must match {branch_prefix}/fix-issue-{{number}}, expected {expected_branch_name!r}")
        elif branch_name != expected_branch_name:
            errors.append(f"branch_name {branch_name!r} must reference issue #{issue_number}, expected {expected_branch_name!r}")

    pr_description = data.get("pr_description")
    if "pr_description" in data and not isinstance(pr_description, str):
        errors.append(f"pr_description must be a string, got {_type_name(pr_description)}")

    file_changes = data.get("file_changes")
    if "file_changes" in data:
        if not isinstance(file_changes, list):
            errors.append(f"file_changes must be an array, got {_type_name(file_changes)}")
        elif not file_changes:
            errors.append("file_changes must contain at least one change")
        else:
            for index, change in enumerate(file_changes):
                errors.extend(_validate_file_change(index=index, change=change))

    return errors

import json
from collections.abc import Sequence
from pathlib import PurePosixPath
from textwrap import dedent
from typing import Any, Self

import yaml
from pydantic import BaseModel, Field

from issue_fix_agent.clients.models.github import RepositoryFile
from issue_fix_agent.sampling.validation import MAX_COMMIT_TITLE_LENGTH, PatchPlan, branch_name_for_issue
from issue_fix_agent.settings import DEFAULT_BRANCH_PREFIX, DEFAULT_STANDARDS_PATH

LANGUAGES_BY_EXTENSION: dict[str, str] = {
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "rb": "ruby",
    "java": "java",
    "kt": "kotlin",
    "go": "go",
    "rs": "rust",
    "c": "c",
    "h": "c",
    "cpp": "cpp",
    "cs": "csharp",
    "php": "php",
    "swift": "swift",
    "html": "html",
    "css": "css",
    "scss": "scss",
    "json": "json",
    "md": "markdown",
    "yaml": "yaml",
    "yml": "yaml",
    "toml": "toml",
    "xml": "xml",
    "sh": "bash",
    "bash": "bash",
    "sql": "sql",
}


def language_for_path(path: str) -> str:
    """Return the fence language hint for a file, based on its extension."""

    extension: str = PurePosixPath(path).suffix.removeprefix(".").lower()

    return LANGUAGES_BY_EXTENSION.get(extension, extension)


class PromptSection(BaseModel):
    title: str = Field(description="The title of the section.")
    level: int = Field(default=1, description="The level of the section.")
    section: str = Field(description="The section of the prompt.")

    def render_text(self) -> str:
        return f"{'#' * self.level} {self.title}\n{self.section}"


WHO_YOU_ARE = PromptSection(
    title="Who you are",
    level=1,
    section="""
You are an autonomous developer agent. You turn a request made in a GitHub issue comment into a complete, working
change to the repository. Your change is published as a branch and a pull request without further editing, so it
must be production ready: no pseudocode, no placeholders and no omitted sections.
""",
)

QUALITY = PromptSection(
    title="Quality",
    level=1,
    section="""
- Follow the existing style and patterns of the files you are given.
- Include every import the changed code needs.
- Handle errors where the surrounding code does.
- Only change what the request needs.
""",
)

RESPONSE_FORMAT = PromptSection(
    title="Response Format",
    level=1,
    section="""
Respond with exactly one JSON object and nothing else. Do not wrap it in a Markdown code block and do not add any
text before or after it. Make sure every string is properly escaped.
""",
)


class PromptBuilder(BaseModel):
    sections: list[PromptSection] = Field(default_factory=list, description="The sections of the prompt.")

    def add_text_section(self, title: str, text: str | list[str], level: int = 1) -> Self:
        if not isinstance(text, list):
            text = [text]

        text_block = "\n".join([dedent(text) for text in text])

        self.sections.append(PromptSection(title=title, level=level, section=text_block))

        return self

    def add_code_section(self, title: str, code: str, language: str, level: int = 1) -> Self:
        code_block = f"```{language}\n{code}\n```"

        self.sections.append(PromptSection(title=title, level=level, section=code_block))

        return self

    def add_json_section(self, title: str, obj: dict[str, Any], preamble: str | None = None, level: int = 1) -> Self:
        json_block: str = preamble or ""

        json_block += f"""
```json
{json.dumps(obj, indent=2)}
```"""

        self.sections.append(PromptSection(title=title, level=level, section=json_block))

        return self

    def add_yaml_section(self, title: str, obj: dict[str, Any] | BaseModel, preamble: str | None = None, level: int = 1) -> Self:
        yaml_text: str = yaml.safe_dump(obj.model_dump() if isinstance(obj, BaseModel) else obj, sort_keys=False)

        yaml_block: str = preamble or ""

        yaml_block += f"""
```yaml
{yaml_text}```"""

        self.sections.append(PromptSection(title=title, level=level, section=yaml_block))

        return self

    def add_prompt_section(self, section: PromptSection) -> Self:
        self.sections.append(section)
        return self

    def render_text(self) -> str:
        return "\n\n".join(section.render_text() for section in self.sections)


def patch_plan_schema(branch_prefix: str = DEFAULT_BRANCH_PREFIX) -> dict[str, Any]:
    """The JSON schema of the response, with the branch pattern for this deployment."""

    schema: dict[str, Any] = PatchPlan.model_json_schema()

    schema["properties"]["branch_name"]["pattern"] = f"^{branch_prefix}/fix-issue-[0-9]+$"

    return schema


def build_system_prompt(
    standards: str | None, branch_prefix: str = DEFAULT_BRANCH_PREFIX, standards_path: str = DEFAULT_STANDARDS_PATH
) -> str:
    """The system prompt: who the model is, the response contract and the repository's coding standards."""

    builder = PromptBuilder(sections=[WHO_YOU_ARE, RESPONSE_FORMAT])

    _ = builder.add_json_section(
        title="Response Schema",
        obj=patch_plan_schema(branch_prefix=branch_prefix),
        preamble="The JSON object must match this schema:",
    )

    _ = builder.add_text_section(
        title="Response Rules",
        text=[
            "- `commit_title` follows conventional commits, for example `fix: Update button padding`.",
            f"- `commit_title` is at most {MAX_COMMIT_TITLE_LENGTH} characters.",
            f"- `branch_name` is exactly `{branch_prefix}/fix-issue-{{number}}` for the issue you are fixing.",
            "- `pr_description` explains the change in Markdown.",
            "- `file_changes` has at least one entry. `operation` is one of `add`, `modify` or `delete`.",
            "- For `add` and `modify`, `content` is the COMPLETE file content after the change, never a diff.",
            "- For `delete`, `content` is omitted or null.",
        ],
    )

    if standards:
        _ = builder.add_text_section(
            title="Coding Standards",
            text=f"The repository's coding standards, from {standards_path}. Follow all of them strictly.",
        )
        _ = builder.add_prompt_section(PromptSection(title=standards_path, level=2, section=standards))
    else:
        _ = builder.add_text_section(title="Coding Standards", text=f"{standards_path} is not available, use general best practices.")

    _ = builder.add_prompt_section(QUALITY)

    return builder.render_text()


def build_user_prompt(
    issue_number: int,
    issue_title: str,
    issue_body: str | None,
    comment_body: str,
    comment_author: str,
    files: Sequence[RepositoryFile],
    branch_prefix: str = DEFAULT_BRANCH_PREFIX,
) -> str:
    """The user prompt: the issue, the request and the files it names."""

    builder = PromptBuilder()

    description: str = issue_body.strip() if issue_body and issue_body.strip() else "(no description)"

    _ = builder.add_yaml_section(
        title="GitHub Issue", obj={"number": issue_number, "title": issue_title}, preamble="The issue this change must fix:"
    )

    _ = builder.add_text_section(title="Issue Description", text=description)

    _ = builder.add_text_section(title=f"Request (from a comment by @{comment_author})", text=comment_body)

    if files:
        _ = builder.add_text_section(title="Relevant Code Files", text="The current content of the files named in the request.")
        for file in files:
            _ = builder.add_code_section(title=f"File: {file.path}", code=file.content, language=language_for_path(file.path), level=2)
    else:
        _ = builder.add_text_section(
            title="Relevant Code Files",
            text="No files were provided. Decide from the issue which files to change and provide their complete content.",
        )

    _ = builder.add_text_section(
        title="Task",
        text=[
            "1. Analyze the request and the provided code.",
            "2. Produce the complete changes that address the issue.",
            f'3. Use the branch name "{branch_name_for_issue(issue_number=issue_number, branch_prefix=branch_prefix)}".',
            "4. Respond with ONLY the JSON object.",
        ],
    )

    return builder.render_text()


def build_retry_prompt(user_prompt: str, previous_response: str, errors: Sequence[str]) -> str:
    """The prompt for another attempt after a response failed validation. The previous response is embedded verbatim."""

    builder = PromptBuilder()

    _ = builder.add_prompt_section(PromptSection(title="Original Request", section=user_prompt))

    _ = builder.add_prompt_section(PromptSection(title="Your Previous Response", section=f"Your previous response was:\n\n{previous_response}"))

    _ = builder.add_text_section(title="Validation Errors", text=[f"- {error}" for error in errors])

    _ = builder.add_text_section(
        title="Correction",
        text=[
            "Generate a corrected response:",
            "- Fix every validation error listed above.",
            "- Include all required fields: commit_title, branch_name, pr_description, file_changes.",
            "- Respond with ONLY the JSON object, no Markdown code block and no extra text.",
        ],
    )

    return builder.render_text()

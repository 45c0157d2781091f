from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

from issue_fix_agent.settings import DEFAULT_TRIGGER_PHRASES

PATH_MARKERS = ("/", "\\", ".")


class ActivationCommand(BaseModel):
    """The intent parsed from a comment."""

    model_config = ConfigDict(frozen=True)

    activated: bool = Field(description="Whether the comment contains a trigger phrase.")
    target_paths: list[str] = Field(default_factory=list, description="The file paths named after the trigger phrase, in order.")


def looks_like_path(token: str) -> bool:
    return any(marker in token for marker in PATH_MARKERS)


def parse_command(text: str | None, triggers: Sequence[str] = DEFAULT_TRIGGER_PHRASES) -> ActivationCommand:
    """Parse a comment for a trigger phrase and the file paths that follow it on the same line.

    For example, `@bot fix src/app.py docs/notes.md` activates with both paths, while a comment without a
    trigger phrase never activates.
    """

    if not text:
        return ActivationCommand(activated=False)

    lowered_triggers = [trigger.lower() for trigger in triggers if trigger]

    for line in text.splitlines():
        lowered_line = line.lower()

        for trigger in lowered_triggers:
            position = lowered_line.find(trigger)
            if position == -1:
                continue

            remainder = line[position + len(trigger) :]

            return ActivationCommand(activated=True, target_paths=[token for token in remainder.split() if looks_like_path(token)])

    return ActivationCommand(activated=False)

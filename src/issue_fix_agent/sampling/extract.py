import json
from typing import Any

FENCE = "```"


class ResponseDecodeError(ValueError):
    """The model response is not a JSON document."""


def extract_json_blocks_from_text(text: str) -> list[str]:
    """Extract all fenced blocks from a text string."""

    lines = text.strip().split("\n")

    start_index: int | None = None

    matches: list[str] = []

    for i, line in enumerate(lines):
        if not line.strip().startswith(FENCE):
            continue

        if start_index is None:
            start_index = i + 1
            continue

        matches.append("\n".join(lines[start_index:i]))
        start_index = None

    return matches


def strip_fences(text: str) -> str:
    """Remove a ``` or ```json fence wrapped around the response, if there is one.

    For example:
    ```json
    {"commit_title": "fix: pad the button"}
    ```
    becomes the bare JSON object.
    """

    stripped: str = text.strip()

    if not stripped.startswith(FENCE):
        return stripped

    if blocks := extract_json_blocks_from_text(stripped):
        return blocks[0].strip()

    # An opening fence that was never closed, with whatever language tag it carries
    _, _, remainder = stripped.partition("\n")

    return remainder.strip()


def decode_response(text: str) -> Any:  # pyright: ignore[reportAny]
    """Decode the JSON document in a model response.

    Raises:
        ResponseDecodeError: If the text is not valid JSON once fences are removed.
    """

    candidate: str = strip_fences(text)

    if not candidate:
        msg = "Response is empty."
        raise ResponseDecodeError(msg)

    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        msg = f"Response is not valid JSON: {e.msg} at line {e.lineno} column {e.colno}."
        raise ResponseDecodeError(msg) from e

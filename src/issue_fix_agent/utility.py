import base64
import time

from githubkit.response import Response


def extract_response[T](response: Response[T], /) -> T:
    """Extract the response from a response."""

    return response.parsed_data


def decode_content(content: str) -> str:
    return base64.b64decode(content).decode("utf-8")


def encode_content(content: str) -> str:
    return base64.b64encode(content.encode("utf-8")).decode("ascii")


def elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Self

from pydantic import BaseModel, ConfigDict, Field

from issue_fix_agent.errors import ConfigurationError

DEFAULT_TRIGGER_PHRASES = ("@bot fix", "/fix-issue")
DEFAULT_BRANCH_PREFIX = "bot"
DEFAULT_STANDARDS_PATH = "AGENTS.md"
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_MODEL_TIMEOUT = 120.0
DEFAULT_MAX_ATTEMPTS = 3

ENV_VARS: dict[str, str] = {
    "app_id": "GITHUB_APP_ID",
    "private_key": "GITHUB_APP_PRIVATE_KEY",
    "webhook_secret": "GITHUB_WEBHOOK_SECRET",
    "google_api_key": "GOOGLE_API_KEY",
    "openai_api_key": "OPENAI_API_KEY",
}


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class AgentSettings(BaseModel):
    """Runtime configuration for the fix agent."""

    model_config = ConfigDict(frozen=True)

    app_id: str | None = Field(default=None, description="The GitHub App identifier.")
    private_key: str | None = Field(default=None, description="The GitHub App private key, PEM encoded PKCS#8.")
    webhook_secret: str | None = Field(default=None, description="The shared secret used to sign webhook deliveries.")

    google_api_key: str | None = Field(default=None, description="The Google Gemini API key.")
    openai_api_key: str | None = Field(default=None, description="The OpenAI API key.")
    model: str | None = Field(default=None, description="The preferred model, tried before the provider's fallback list.")

    default_branch: str | None = Field(default=None, description="Overrides the branch pull requests are opened against.")
    branch_prefix: str = Field(default=DEFAULT_BRANCH_PREFIX, description="The prefix of generated branch names.")
    trigger_phrases: tuple[str, ...] = Field(default=DEFAULT_TRIGGER_PHRASES, description="Phrases that activate the agent.")
    standards_path: str = Field(default=DEFAULT_STANDARDS_PATH, description="The coding standards document to include in prompts.")

    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, description="Timeout in seconds for repository API calls.")
    model_timeout: float = Field(default=DEFAULT_MODEL_TIMEOUT, description="Timeout in seconds for model calls.")
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1, description="Attempts allowed to produce a valid patch plan.")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Self:
        env_map = os.environ if env is None else env

        private_key = _clean(env_map.get("GITHUB_APP_PRIVATE_KEY"))
        if private_key is None and (private_key_path := _clean(env_map.get("GITHUB_APP_PRIVATE_KEY_PATH"))):
            private_key = Path(private_key_path).read_text(encoding="utf-8")

        # Keys pasted into a single-line env var keep their newlines escaped
        if private_key is not None:
            private_key = private_key.replace("\\n", "\n")

        trigger_phrases = DEFAULT_TRIGGER_PHRASES
        if raw_triggers := _clean(env_map.get("TRIGGER_PHRASES")):
            trigger_phrases = tuple(phrase.strip() for phrase in raw_triggers.split(",") if phrase.strip())

        return cls(
            app_id=_clean(env_map.get("GITHUB_APP_ID")),
            private_key=private_key,
            webhook_secret=_clean(env_map.get("GITHUB_WEBHOOK_SECRET")),
            google_api_key=_clean(env_map.get("GOOGLE_API_KEY")),
            openai_api_key=_clean(env_map.get("OPENAI_API_KEY")),
            model=_clean(env_map.get("MODEL")),
            default_branch=_clean(env_map.get("DEFAULT_BRANCH")),
            branch_prefix=_clean(env_map.get("BRANCH_PREFIX")) or DEFAULT_BRANCH_PREFIX,
            trigger_phrases=trigger_phrases,
            standards_path=_clean(env_map.get("STANDARDS_PATH")) or DEFAULT_STANDARDS_PATH,
            request_timeout=float(_clean(env_map.get("REQUEST_TIMEOUT")) or DEFAULT_REQUEST_TIMEOUT),
            model_timeout=float(_clean(env_map.get("MODEL_TIMEOUT")) or DEFAULT_MODEL_TIMEOUT),
            max_attempts=int(_clean(env_map.get("MAX_ATTEMPTS")) or DEFAULT_MAX_ATTEMPTS),
        )

    def require(self, *fields: str) -> None:
        """Raise a ConfigurationError naming every missing setting."""

        missing: list[str] = [ENV_VARS.get(field, field) for field in fields if not getattr(self, field)]

        if missing:
            raise ConfigurationError(missing=missing)

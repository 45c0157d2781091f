from typing import Protocol, override

import openai
from fastmcp.utilities.logging import get_logger
from google.genai import Client as GoogleGenaiClient
from google.genai import errors as google_genai_errors
from google.genai.types import Candidate, GenerateContentConfig, GenerateContentResponse, HttpOptions, UserContent
from google.genai.types import Part as GoogleGenaiPart
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletion
from pydantic import BaseModel, Field

from issue_fix_agent.errors import ModelRequestError, ModelUnavailableError
from issue_fix_agent.settings import AgentSettings

logger = get_logger(__name__)

NOT_FOUND_ERROR = 404

GOOGLE_MODELS: tuple[str, ...] = ("gemini-2.5-flash", "gemini-2.5-pro", "gemini-2.0-flash")
OPENAI_MODELS: tuple[str, ...] = ("gpt-4o", "gpt-4.1", "gpt-4o-mini")


def prioritize_models(preferred: str | None, fallbacks: tuple[str, ...]) -> list[str]:
    """Put the preferred model at the head of the provider's fallback list."""

    models: list[str] = [preferred] if preferred else []

    models.extend(model for model in fallbacks if model not in models)

    return models


class ModelResponse(BaseModel):
    text: str = Field(description="The text of the response.")
    model: str = Field(description="The model that produced the response.")
    input_tokens: int | None = Field(default=None, description="The prompt tokens, if the provider reports them.")
    output_tokens: int | None = Field(default=None, description="The response tokens, if the provider reports them.")


class ModelClient(Protocol):
    """A generative model provider."""

    @property
    def models(self) -> list[str]:
        """The models to try, in priority order."""
        ...

    async def generate(self, model: str, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> ModelResponse:
        """Generate a response.

        Raises:
            ModelUnavailableError: If the provider does not recognize the model.
            ModelRequestError: If the request fails for any other reason.
        """
        ...


class GoogleGenaiModelClient(ModelClient):
    def __init__(self, models: list[str], client: GoogleGenaiClient | None = None, api_key: str | None = None, timeout: float | None = None):
        self.client: GoogleGenaiClient = client or GoogleGenaiClient(
            api_key=api_key, http_options=HttpOptions(timeout=int(timeout * 1000)) if timeout else None
        )
        self._models: list[str] = models

    @property
    @override
    def models(self) -> list[str]:
        return self._models

    @override
    async def generate(self, model: str, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> ModelResponse:
        try:
            response: GenerateContentResponse = await self.client.aio.models.generate_content(
                model=model,
                contents=[UserContent(parts=[GoogleGenaiPart(text=user_prompt)])],
                config=GenerateContentConfig(
                    system_instruction=system_prompt,
                    temperature=temperature,
                    max_output_tokens=max_tokens,
                ),
            )
        except google_genai_errors.ClientError as e:
            if e.code == NOT_FOUND_ERROR:
                raise ModelUnavailableError(model=model, message=str(e)) from e
            raise ModelRequestError(model=model, message=str(e)) from e
        except google_genai_errors.APIError as e:
            raise ModelRequestError(model=model, message=str(e)) from e

        if not (text := response.text):
            candidate = get_candidate_from_response(response)

            raise ModelRequestError(model=model, message=f"No content in response from completion: {candidate.finish_reason}")

        usage = response.usage_metadata

        return ModelResponse(
            text=text,
            model=response.model_version or model,
            input_tokens=usage.prompt_token_count if usage else None,
            output_tokens=usage.candidates_token_count if usage else None,
        )


def get_candidate_from_response(response: GenerateContentResponse) -> Candidate:
    if response.candidates and response.candidates[0]:
        return response.candidates[0]

    return Candidate()


class OpenAIModelClient(ModelClient):
    def __init__(self, models: list[str], client: AsyncOpenAI | None = None, api_key: str | None = None, timeout: float | None = None):
        self.client: AsyncOpenAI = client or AsyncOpenAI(api_key=api_key, timeout=timeout)
        self._models: list[str] = models

    @property
    @override
    def models(self) -> list[str]:
        return self._models

    @override
    async def generate(self, model: str, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> ModelResponse:
        try:
            response: ChatCompletion = await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_completion_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.NotFoundError as e:
            raise ModelUnavailableError(model=model, message=str(e)) from e
        except openai.OpenAIError as e:
            raise ModelRequestError(model=model, message=str(e)) from e

        if not response.choices or not (text := response.choices[0].message.content):
            finish_reason = response.choices[0].finish_reason if response.choices else None
            raise ModelRequestError(model=model, message=f"No content in response from completion: {finish_reason}")

        return ModelResponse(
            text=text,
            model=response.model or model,
            input_tokens=response.usage.prompt_tokens if response.usage else None,
            output_tokens=response.usage.completion_tokens if response.usage else None,
        )


def get_model_client(settings: AgentSettings) -> ModelClient | None:
    """Pick the model provider from the configured API key, preferring Google."""

    if settings.google_api_key:
        logger.info("Using Google Gemini for patch generation")
        return GoogleGenaiModelClient(
            models=prioritize_models(settings.model, GOOGLE_MODELS), api_key=settings.google_api_key, timeout=settings.model_timeout
        )

    if settings.openai_api_key:
        logger.info("Using OpenAI for patch generation")
        return OpenAIModelClient(
            models=prioritize_models(settings.model, OPENAI_MODELS), api_key=settings.openai_api_key, timeout=settings.model_timeout
        )

    logger.warning(
        msg=(
            "No model provider found, fix requests will fail until one is configured. "
            "Set GOOGLE_API_KEY or OPENAI_API_KEY to generate patches."
        )
    )

    return None

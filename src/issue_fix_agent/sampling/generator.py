"""Patch generation: prompt the model, validate its answer, and retry or fall back until a valid plan is produced.

The loop runs over (attempt, model). A response that fails validation costs an attempt and the next attempt
re-prompts the same model with the errors. A model the provider does not recognize is skipped for the next one in
the priority list without costing an attempt. Any other model failure ends the loop.
"""

from logging import Logger
from typing import Any

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, Field, ValidationError

from issue_fix_agent.context import GatheredContext
from issue_fix_agent.errors import ConfigurationError, ModelUnavailableError, SchemaValidationError
from issue_fix_agent.sampling.extract import ResponseDecodeError, decode_response
from issue_fix_agent.sampling.handler import ModelClient, ModelResponse
from issue_fix_agent.sampling.prompts import build_retry_prompt, build_system_prompt, build_user_prompt
from issue_fix_agent.sampling.validation import PatchPlan, validate_patch_plan
from issue_fix_agent.settings import DEFAULT_BRANCH_PREFIX, DEFAULT_MAX_ATTEMPTS, DEFAULT_STANDARDS_PATH

DEFAULT_MAX_TOKENS = 16000
DEFAULT_TEMPERATURE = 0.7


class GenerationMetadata(BaseModel):
    """How a patch plan was produced. Only reported, never acted on."""

    model: str = Field(description="The model that produced the accepted response.")
    input_tokens: int | None = Field(default=None, description="Prompt tokens across all attempts, if reported.")
    output_tokens: int | None = Field(default=None, description="Response tokens across all attempts, if reported.")
    attempts: int = Field(description="The number of attempts used.")


class GeneratedPatch(BaseModel):
    plan: PatchPlan
    metadata: GenerationMetadata


class IssueRequest(BaseModel):
    """The issue and the comment that asked for a fix."""

    issue_number: int
    issue_title: str
    issue_body: str | None = None
    comment_body: str
    comment_author: str


def _add_tokens(total: int | None, count: int | None) -> int | None:
    if count is None:
        return total
    return (total or 0) + count


class PatchGenerator:
    model_client: ModelClient | None
    branch_prefix: str
    standards_path: str
    max_attempts: int
    max_tokens: int
    temperature: float
    logger: Logger

    def __init__(
        self,
        model_client: ModelClient | None,
        branch_prefix: str = DEFAULT_BRANCH_PREFIX,
        standards_path: str = DEFAULT_STANDARDS_PATH,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        logger: Logger | None = None,
    ):
        self.model_client = model_client
        self.branch_prefix = branch_prefix
        self.standards_path = standards_path
        self.max_attempts = max_attempts
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.logger = logger or get_logger(__name__)

    def _check_model_client(self) -> ModelClient:
        if self.model_client is None:
            raise ConfigurationError(missing=["GOOGLE_API_KEY or OPENAI_API_KEY"])
        return self.model_client

    def check_response(self, text: str, issue_number: int) -> tuple[PatchPlan | None, list[str]]:
        """Decode and validate a response, returning the plan or the reasons it was rejected."""

        try:
            data: Any = decode_response(text)  # pyright: ignore[reportAny]
        except ResponseDecodeError as e:
            return None, [str(e)]

        if errors := validate_patch_plan(data, issue_number=issue_number, branch_prefix=self.branch_prefix):
            return None, errors

        try:
            return PatchPlan.model_validate(data), []
        except ValidationError as e:
            return None, [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()]

    async def generate(self, request: IssueRequest, context: GatheredContext) -> GeneratedPatch:
        """Produce a validated patch plan for the request.

        Raises:
            ConfigurationError: If no model provider is configured.
            ModelUnavailableError: If no model in the priority list is recognized by the provider.
            ModelRequestError: If a model request fails for any other reason.
            SchemaValidationError: If every attempt produced an invalid response.
        """

        model_client: ModelClient = self._check_model_client()
        models: list[str] = model_client.models

        system_prompt: str = build_system_prompt(
            standards=context.standards, branch_prefix=self.branch_prefix, standards_path=self.standards_path
        )
        user_prompt: str = build_user_prompt(
            issue_number=request.issue_number,
            issue_title=request.issue_title,
            issue_body=request.issue_body,
            comment_body=request.comment_body,
            comment_author=request.comment_author,
            files=context.files,
            branch_prefix=self.branch_prefix,
        )

        prompt: str = user_prompt
        attempt: int = 1
        model_index: int = 0
        last_errors: list[str] = []
        input_tokens: int | None = None
        output_tokens: int | None = None

        while attempt <= self.max_attempts:
            if model_index >= len(models):
                raise ModelUnavailableError(model=", ".join(models), message="No model in the priority list is available.")

            model: str = models[model_index]

            self.logger.info(f"Generating patch for issue #{request.issue_number}: attempt {attempt}/{self.max_attempts} with {model}")

            try:
                response: ModelResponse = await model_client.generate(
                    model=model,
                    system_prompt=system_prompt,
                    user_prompt=prompt,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                )
            except ModelUnavailableError:
                self.logger.warning(f"Model {model} is not available, falling back to the next model")
                model_index += 1
                continue

            input_tokens = _add_tokens(input_tokens, response.input_tokens)
            output_tokens = _add_tokens(output_tokens, response.output_tokens)

            plan, errors = self.check_response(text=response.text, issue_number=request.issue_number)

            if plan is not None:
                self.logger.info(f"Generated a valid patch plan on attempt {attempt} with {response.model}")
                return GeneratedPatch(
                    plan=plan,
                    metadata=GenerationMetadata(model=response.model, input_tokens=input_tokens, output_tokens=output_tokens, attempts=attempt),
                )

            self.logger.warning(f"Attempt {attempt} produced an invalid patch plan: {'; '.join(errors)}")

            last_errors = errors
            prompt = build_retry_prompt(user_prompt=user_prompt, previous_response=response.text, errors=errors)
            attempt += 1

        raise SchemaValidationError(errors=last_errors, attempts=self.max_attempts)

"""
Inference client built on Pydantic AI.

The core only needs raw text back: the response is untrusted and goes
through the reconciler, so the agent is asked for `str` output instead of a
validated model. One call per invocation, bounded by a hard timeout and never
retried here.
"""

import asyncio
import time
from typing import Protocol

import structlog
from pydantic_ai import Agent

from healthmetrics.domain.errors import InferenceError, InferenceTimeoutError

logger = structlog.get_logger(__name__)


class InferenceClient(Protocol):
    """Sends one instruction + payload pair and returns the raw response body."""

    model_name: str

    async def complete(self, system_prompt: str, user_prompt: str) -> str: ...


class PydanticAIInferenceClient:
    """InferenceClient backed by a pydantic-ai Agent with plain-text output."""

    def __init__(
        self,
        model_name: str = "openai:gpt-4o",
        temperature: float = 0.3,
        max_tokens: int = 4000,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.model_name = model_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.logger = logger.bind(component="inference_client", model=model_name)
        self._agents: dict[str, Agent[None, str]] = {}

    def _agent_for(self, system_prompt: str) -> Agent[None, str]:
        # Model resolution is deferred so construction works without provider credentials
        agent = self._agents.get(system_prompt)
        if agent is None:
            agent = Agent(
                model=self.model_name,
                output_type=str,
                system_prompt=system_prompt,
                defer_model_check=True,
            )
            self._agents[system_prompt] = agent
        return agent

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        agent = self._agent_for(system_prompt)
        start = time.perf_counter()

        try:
            result = await asyncio.wait_for(
                agent.run(
                    user_prompt,
                    model_settings={
                        "temperature": self.temperature,
                        "max_tokens": self.max_tokens,
                    },
                ),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as e:
            self.logger.error("inference_timeout", timeout_seconds=self.timeout_seconds)
            raise InferenceTimeoutError(self.timeout_seconds) from e
        except Exception as e:
            self.logger.error("inference_failed", error=str(e))
            raise InferenceError(f"Inference call failed: {e}") from e

        self.logger.info(
            "inference_completed",
            duration_seconds=round(time.perf_counter() - start, 3),
            response_chars=len(result.output),
        )
        return result.output

"""Language model clients used by the reasoning loop."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Union

from ..models.agent import AgentDefinition
from .prompts import Prompt

logger = logging.getLogger(__name__)


class LanguageModel(ABC):
    """Interface for anything that turns a prompt into a text response."""

    @abstractmethod
    async def complete(self, prompt: Prompt, *, agent: AgentDefinition) -> str:
        """Return the raw text response for ``prompt``."""


class OpenAIChatModel(LanguageModel):
    """Chat completions through the official ``openai`` async client."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        default_model: str = "gpt-4o-mini",
        client=None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.default_model = default_model
        self._client = client

    @property
    def client(self):
        # created on first use so tool-only workflows run without credentials
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
            logger.info("OpenAI client initialized (model=%s)", self.default_model)
        return self._client

    async def complete(self, prompt: Prompt, *, agent: AgentDefinition) -> str:
        response = await self.client.chat.completions.create(
            model=agent.model or self.default_model,
            temperature=agent.temperature,
            messages=[
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
        )
        return response.choices[0].message.content or ""


class ScriptedLanguageModel(LanguageModel):
    """Replays queued responses; used by tests, demos and ``agentflow run --script``.

    Each queued item is either a response string or an exception instance to
    raise. Responses keyed by agent id in ``by_agent`` take precedence over
    the shared queue. When the queues run dry the ``fallback`` response is
    returned, or ``RuntimeError`` is raised if there is none.
    """

    def __init__(
        self,
        responses: Iterable[Union[str, BaseException]] = (),
        fallback: Optional[str] = None,
        by_agent: Optional[Mapping[str, Iterable[Union[str, BaseException]]]] = None,
    ):
        self._responses: Deque[Union[str, BaseException]] = deque(responses)
        self._by_agent: Dict[str, Deque[Union[str, BaseException]]] = {
            agent_id: deque(items) for agent_id, items in (by_agent or {}).items()
        }
        self.fallback = fallback
        self.prompts: List[Prompt] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def push(self, *responses: Union[str, BaseException]) -> None:
        self._responses.extend(responses)

    async def complete(self, prompt: Prompt, *, agent: AgentDefinition) -> str:
        self.prompts.append(prompt)
        own = self._by_agent.get(agent.id)
        if own:
            item = own.popleft()
        elif self._responses:
            item = self._responses.popleft()
        elif self.fallback is not None:
            item = self.fallback
        else:
            raise RuntimeError(f"No scripted response left for agent {agent.id}")
        if isinstance(item, BaseException):
            raise item
        return item

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


class BackendUnavailable(Exception):
    """Generative backend could not produce a reply."""


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def complete(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> LLMResponse:
        """Generate response from LLM. Raises BackendUnavailable."""
        pass

    async def generate(self, persona: str, utterance: str) -> str:
        """Reply to a single user utterance under a system persona."""
        response = await self.complete(
            [
                {"role": "system", "content": persona},
                {"role": "user", "content": utterance},
            ]
        )
        return (response.content or "").strip()

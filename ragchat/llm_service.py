"""
LLM Service Module

Provides one interface over two interchangeable LLM providers:
- Hosted: OpenAI chat completions - requires an API key
- Self-hosted: Ollama /api/chat - base URL, optional API key for proxies

Both providers receive the identical message list and return the same
LLMResponse shape, so callers never need to know which one is configured.
Differences are confined to request shaping and reply normalization.

Failures:
- ConfigurationError: missing hosted API key, raised before any network call
- ProviderError: network error or non-success reply, carries the provider's detail

No retries are attempted and responses are never streamed.

Usage:
    llm = LLMService()
    response = llm.complete([
        {"role": "system", "content": "You are a helpful assistant."},
        {"role": "user", "content": "Hello"},
    ])
    print(response.content)
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Dict, Any
from dataclasses import dataclass

import httpx
import ollama
import openai
from openai import OpenAI

from config.settings import get_settings, LLMConfig
from ragchat.exceptions import ConfigurationError, ProviderError

# Configure logging
logger = logging.getLogger(__name__)

NO_RESPONSE_TEXT = "Error: No response from LLM"

PROVIDER_ALIASES = {
    "hosted": "openai",
    "self-hosted": "ollama",
}


@dataclass
class LLMResponse:
    """
    Standardized response from LLM providers.

    Attributes:
        content: The generated text response
        model: Model name used for generation
        usage: Token usage statistics (if available)
        finish_reason: Why generation stopped
    """
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None
    finish_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content}

    def __str__(self) -> str:
        return self.content


class BaseLLMProvider(ABC):
    """
    Capability interface every provider implements.

    Providers share no behavior; this class only fixes the contract.
    """

    name: str = ""

    @abstractmethod
    def complete(self, messages: List[Dict[str, str]]) -> LLMResponse:
        """
        Send a conversation and return the reply.

        Args:
            messages: Ordered [{"role": ..., "content": ...}, ...]

        Returns:
            LLMResponse object

        Raises:
            ConfigurationError: Provider is not usable with the current settings
            ProviderError: The provider call failed
        """
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name."""
        pass


class OpenAIProvider(BaseLLMProvider):
    """
    OpenAI provider for hosted GPT models.

    Models:
    - gpt-4o: Default
    - gpt-4o-mini, gpt-3.5-turbo: Cheaper alternatives
    """

    name = "openai"

    def __init__(
        self,
        model: str = "gpt-4o",
        api_key: Optional[str] = None,
        temperature: float = 0.7,
        timeout: float = 60.0,
        http_client: Optional[httpx.Client] = None,
    ):
        """
        Initialize OpenAI provider.

        Args:
            model: OpenAI model name
            api_key: API key; checked when a completion is attempted
            temperature: Sampling temperature (0-1)
            timeout: Request deadline in seconds
            http_client: Optional httpx client for the SDK to send requests with
        """
        self._model = model
        self._api_key = api_key
        self._temperature = temperature
        self._timeout = timeout
        self._http_client = http_client
        self._client = None

        logger.info(f"Initializing OpenAIProvider: model={model}")

    def _get_client(self) -> OpenAI:
        """Get or create OpenAI client."""
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError("OpenAI API Key is missing")

            # One attempt per turn; a failed call is reported, never re-sent
            self._client = OpenAI(
                api_key=self._api_key,
                timeout=self._timeout,
                max_retries=0,
                http_client=self._http_client,
            )
            logger.info("OpenAI client initialized")
        return self._client

    def complete(self, messages: List[Dict[str, str]]) -> LLMResponse:
        """Generate a reply using OpenAI."""
        client = self._get_client()

        try:
            response = client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=self._temperature,
            )
        except openai.OpenAIError as e:
            logger.error(f"OpenAI generation error: {e}")
            raise ProviderError(str(e), provider=self.name) from e

        if not response.choices or not response.choices[0].message.content:
            logger.warning("OpenAI returned no message content")
            return LLMResponse(content=NO_RESPONSE_TEXT, model=self._model)

        choice = response.choices[0]
        usage = None
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=choice.message.content,
            model=response.model or self._model,
            usage=usage,
            finish_reason=choice.finish_reason,
        )

    @property
    def model_name(self) -> str:
        return self._model


class OllamaProvider(BaseLLMProvider):
    """
    Ollama provider for self-hosted inference.

    Requirements:
    - Ollama server reachable at base_url: https://ollama.ai
    - Model pulled: ollama pull llama3
    """

    name = "ollama"

    def __init__(
        self,
        model: str = "llama3",
        base_url: str = "http://localhost:11434",
        temperature: float = 0.7,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize Ollama provider.

        Args:
            model: Ollama model name
            base_url: Ollama server URL
            temperature: Sampling temperature (0-1)
            api_key: Optional bearer token for authenticating proxies
            timeout: Request deadline in seconds
        """
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._temperature = temperature
        self._api_key = api_key
        self._timeout = timeout
        self._client = None

        logger.info(f"Initializing OllamaProvider: model={model}, url={self._base_url}")

    def _get_client(self) -> ollama.Client:
        """Get or create Ollama client."""
        if self._client is None:
            headers = {}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = ollama.Client(
                host=self._base_url,
                headers=headers,
                timeout=self._timeout,
            )
            logger.info("Ollama client initialized")
        return self._client

    def complete(self, messages: List[Dict[str, str]]) -> LLMResponse:
        """Generate a reply using Ollama and normalize it to the common shape."""
        client = self._get_client()

        try:
            response = client.chat(
                model=self._model,
                messages=messages,
                stream=False,
                options={"temperature": self._temperature},
            )
        except ollama.ResponseError as e:
            logger.error(f"Ollama generation error ({e.status_code}): {e.error}")
            raise ProviderError(e.error, provider=self.name) from e
        except (httpx.HTTPError, ConnectionError) as e:
            logger.error(f"Ollama connection error: {e}")
            raise ProviderError(str(e), provider=self.name) from e

        try:
            content = response["message"]["content"]
        except (KeyError, TypeError):
            content = None

        if not content:
            logger.warning("Ollama returned no message content")
            return LLMResponse(content=NO_RESPONSE_TEXT, model=self._model)

        return LLMResponse(
            content=content,
            model=self._model,
            usage={
                "prompt_tokens": response.get("prompt_eval_count") or 0,
                "completion_tokens": response.get("eval_count") or 0,
            },
            finish_reason=response.get("done_reason") or "stop",
        )

    @property
    def model_name(self) -> str:
        return self._model


class LLMService:
    """
    Main LLM Service with unified interface.

    This is the class that other components should use.
    It handles provider selection based on configuration.

    Example:
        # Using default provider from config
        llm = LLMService()

        # Specify provider
        llm = LLMService(provider="ollama")

        response = llm.complete([{"role": "user", "content": "Hi"}])
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        config: Optional[LLMConfig] = None,
    ):
        """
        Initialize the LLM service.

        Args:
            provider: "openai"/"hosted" or "ollama"/"self-hosted" (default from config)
            config: Optional LLMConfig instance

        Raises:
            ConfigurationError: Unknown provider name
        """
        settings = get_settings()
        self.config = config or settings.llm

        provider = provider or self.config.provider
        provider = PROVIDER_ALIASES.get(provider, provider)

        if provider == "openai":
            self._provider = OpenAIProvider(
                model=self.config.openai.model,
                api_key=self.config.openai.api_key,
                temperature=self.config.openai.temperature,
                timeout=self.config.timeout,
            )
        elif provider == "ollama":
            self._provider = OllamaProvider(
                model=self.config.ollama.model,
                base_url=self.config.ollama.base_url,
                temperature=self.config.ollama.temperature,
                api_key=self.config.ollama.api_key,
                timeout=self.config.timeout,
            )
        else:
            raise ConfigurationError(f"Unknown LLM provider: {provider}")

        self._provider_name = provider
        logger.info(f"LLMService initialized with {provider} provider")

    def complete(self, messages: List[Dict[str, str]]) -> LLMResponse:
        """
        Send a conversation to the configured provider.

        Args:
            messages: Ordered [{"role": ..., "content": ...}, ...]

        Returns:
            LLMResponse object
        """
        return self._provider.complete(messages)

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._provider.model_name

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return self._provider_name

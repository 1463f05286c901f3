"""
LLM Client for OpenAI API integration
"""

from typing import Dict, Any, Iterator, List, Optional
import time

import openai

from .logger import get_logger, log_api_call


HTML_MARKERS = ('<!doctype html', '<html')


class UpstreamServiceError(RuntimeError):
    """
    Raised when the model service returns a non-success response.

    Carries whatever detail the service provided so callers can surface it
    per contact.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def normalize_llm_base_url(base_url: Optional[str]) -> Optional[str]:
    """
    Normalize an OpenAI-compatible base URL.

    Strips whitespace and trailing slashes, drops an accidental
    ``/chat/completions`` suffix and appends ``/v1`` when no version
    segment is present.

    Args:
        base_url: Raw base URL from configuration

    Returns:
        Normalized URL, or None when no URL was given
    """
    if not base_url:
        return None

    url = base_url.strip().rstrip('/')
    if not url:
        return None

    for suffix in ('/chat/completions', '/completions'):
        if url.endswith(suffix):
            url = url[:-len(suffix)].rstrip('/')
            break

    last_segment = url.rsplit('/', 1)[-1]
    if not (last_segment.startswith('v') and last_segment[1:].isdigit()):
        url = f"{url}/v1"

    return url


def _looks_like_html(content: Optional[str]) -> bool:
    if not content:
        return False
    return content.strip().lower().startswith(HTML_MARKERS)


class LLMClient:
    """
    Client for interacting with OpenAI-compatible chat models.

    No retries are performed: a failed call is reported once and the caller
    decides what to do with the affected contact.
    """

    def __init__(self, api_key: str, model: str = "gpt-4.1-mini", base_url: Optional[str] = None,
                 client: Optional[Any] = None):
        """
        Initialize LLM client.

        Args:
            api_key: OpenAI API key
            model: Model to use for completions
            base_url: Optional base URL for API (for custom endpoints)
            client: Pre-built client exposing ``chat.completions.create``
        """
        self.api_key = api_key
        self.model = model
        self.logger = get_logger("llm_client")

        if client is not None:
            self.client = client
        else:
            normalized = normalize_llm_base_url(base_url)
            if normalized:
                self.client = openai.OpenAI(api_key=api_key, base_url=normalized)
            else:
                self.client = openai.OpenAI(api_key=api_key)

    def _build_params(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: Optional[int],
        model: Optional[str],
        **kwargs
    ) -> Dict[str, Any]:
        api_params = {
            "model": model or self.model,
            "messages": messages,
            "temperature": temperature,
            **kwargs
        }
        if max_tokens:
            api_params["max_tokens"] = max_tokens
        return api_params

    def _create(self, api_params: Dict[str, Any]) -> Any:
        try:
            return self.client.chat.completions.create(**api_params)
        except openai.APIStatusError as e:
            self.logger.error(f"API error {e.status_code}: {str(e)}")
            raise UpstreamServiceError(f"Model service error ({e.status_code}): {e.message}",
                                       status_code=e.status_code) from e
        except openai.APIError as e:
            self.logger.error(f"API error: {str(e)}")
            raise UpstreamServiceError(f"Model service error: {str(e)}") from e

    def chat_completion(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        **kwargs
    ) -> str:
        """
        Create a chat completion and return the full text.

        Args:
            messages: List of message dictionaries with 'role' and 'content'
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens in response
            model: Override the client's default model
            **kwargs: Additional parameters for the API call

        Returns:
            Response content as string

        Raises:
            UpstreamServiceError: If the service rejects the call or returns HTML
        """
        api_params = self._build_params(messages, temperature, max_tokens, model, **kwargs)
        self.logger.debug(f"Making API call with {len(messages)} messages")

        started = time.time()
        response = self._create(api_params)
        log_api_call('openai', 'chat.completions', 200, time.time() - started)

        if not getattr(response, 'choices', None):
            raise UpstreamServiceError("Model service returned no choices")

        content = response.choices[0].message.content or ""
        if _looks_like_html(content):
            raise UpstreamServiceError(
                "Received HTML response instead of text from LLM endpoint. "
                "This usually indicates an authentication or endpoint configuration issue."
            )

        usage = getattr(response, 'usage', None)
        if usage is not None:
            self.logger.debug(f"Token usage - Prompt: {usage.prompt_tokens}, "
                              f"Completion: {usage.completion_tokens}, "
                              f"Total: {usage.total_tokens}")

        return content

    def stream_chat_completion(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        **kwargs
    ) -> Iterator[str]:
        """
        Stream a chat completion as text chunks.

        Yields:
            Non-empty content deltas in arrival order

        Raises:
            UpstreamServiceError: If the call fails before or during the stream
        """
        api_params = self._build_params(messages, temperature, max_tokens, model, stream=True, **kwargs)
        self.logger.debug(f"Opening stream with {len(messages)} messages")

        started = time.time()
        stream = self._create(api_params)
        chunk_count = 0
        try:
            for chunk in stream:
                choices = getattr(chunk, 'choices', None)
                if not choices:
                    continue
                delta = choices[0].delta
                text = getattr(delta, 'content', None)
                if text:
                    chunk_count += 1
                    yield text
        except openai.APIError as e:
            self.logger.error(f"Stream interrupted: {str(e)}")
            raise UpstreamServiceError(f"Model service stream interrupted: {str(e)}") from e

        log_api_call('openai', 'chat.completions (stream)', 200, time.time() - started)
        self.logger.debug(f"Stream finished after {chunk_count} chunks")

    def complete_text(self, system_prompt: str, user_prompt: str, stream: bool = True, **kwargs) -> str:
        """
        Run one system+user exchange and return the fully drained text.

        Args:
            system_prompt: System instruction block
            user_prompt: Per-request user prompt
            stream: Read the response incrementally
            **kwargs: temperature, max_tokens, model

        Returns:
            Complete response text
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        if not stream:
            return self.chat_completion(messages, **kwargs)
        return "".join(self.stream_chat_completion(messages, **kwargs))

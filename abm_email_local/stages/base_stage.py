"""
Base Stage Interface for ABM Email generation stages
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
import re
import time
from datetime import datetime

from ..config.prompts import PromptManager
from ..config.settings import ConfigManager
from ..utils.llm_client import LLMClient
from ..utils.logger import get_logger


def _stage_name_for(cls: type) -> str:
    # SequenceGenerationStage -> sequence_generation
    base = cls.__name__.replace('Stage', '')
    return re.sub('([a-z0-9])([A-Z])', r'\1_\2', base).lower()


class BaseStage(ABC):
    """
    Abstract base for a unit of work run once per contact.

    A stage owns the model client and prompt manager it needs and reports
    its outcome as a result envelope: ``status``, ``stage``,
    ``execution_id`` and ``timestamp``, plus ``data`` on success or
    ``error_type``/``error_message`` on failure.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        llm_client: Optional[LLMClient] = None,
        prompt_manager: Optional[PromptManager] = None,
    ):
        """
        Args:
            config: Run configuration (see ``api.build_config``)
            llm_client: Injected client; when omitted one is built from
                ``openai_api_key`` if the config has one
            prompt_manager: Shared prompt manager, else one reading
                overrides from ``<data_dir>/config``
        """
        self.config = config
        self.stage_name = _stage_name_for(type(self))
        self.logger = get_logger(self.stage_name)
        self.llm_client = llm_client if llm_client is not None else self._client_from_config()
        self.prompt_manager = prompt_manager or PromptManager(
            ConfigManager(config.get('data_dir', './abm_email_data'))
        )

    def _client_from_config(self) -> Optional[LLMClient]:
        api_key = self.config.get('openai_api_key')
        if not api_key:
            return None
        return LLMClient(
            api_key=api_key,
            model=self.config.get('llm_model', 'gpt-4.1-mini'),
            base_url=self.config.get('llm_base_url'),
        )

    @abstractmethod
    def execute(self, context: Dict[str, Any]) -> Dict[str, Any]:
        """Run the stage and return a result envelope."""

    @abstractmethod
    def validate_input(self, context: Dict[str, Any]) -> bool:
        """True when ``context`` carries everything ``execute`` needs."""

    def call_llm_with_system(
        self,
        system_prompt: str,
        user_prompt: str,
        on_chunk: Optional[Callable[[str], None]] = None,
        **kwargs
    ) -> str:
        """
        Stream one system+user exchange and return the drained text.

        ``on_chunk`` sees each piece as it arrives; the return value is
        their concatenation. Extra keyword arguments (model, temperature,
        max_tokens) go to the client.

        Raises:
            ValueError: If no client is configured
            UpstreamServiceError: If the model service fails
        """
        if not self.llm_client:
            raise ValueError("LLM client not initialized. Provide openai_api_key in config.")

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        self.logger.debug(f"Prompt sizes: system={len(system_prompt)} user={len(user_prompt)} chars")

        received: List[str] = []
        for chunk in self.llm_client.stream_chat_completion(messages, **kwargs):
            received.append(chunk)
            if on_chunk is not None:
                on_chunk(chunk)

        text = "".join(received)
        self.logger.debug(f"Model returned {len(text)} chars in {len(received)} chunks")
        return text

    def execute_with_timing(self, context: Dict[str, Any]) -> Dict[str, Any]:
        """``execute`` plus a ``timing`` entry with start, end and duration."""
        execution_id = context.get('execution_id', 'unknown')
        started = time.time()
        self.logger.info(f"Starting {self.stage_name} for {execution_id}")

        try:
            result = self.execute(context)
        except Exception as e:
            self.logger.error(
                f"{self.stage_name} raised for {execution_id} after {time.time() - started:.2f}s: {str(e)}"
            )
            raise

        finished = time.time()
        result['timing'] = {
            'start_time': started,
            'end_time': finished,
            'duration_seconds': finished - started,
        }
        self.logger.info(
            f"Finished {self.stage_name} for {execution_id}: {result.get('status', 'unknown')} "
            f"in {finished - started:.2f}s"
        )
        return result

    def _envelope(self, status: str, context: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'status': status,
            'stage': self.stage_name,
            'execution_id': context.get('execution_id'),
            'timestamp': datetime.now().isoformat(),
        }

    def create_error_result(self, error: Exception, context: Dict[str, Any]) -> Dict[str, Any]:
        result = self._envelope('error', context)
        result['error_type'] = type(error).__name__
        result['error_message'] = str(error)
        return result

    def create_success_result(self, data: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        result = self._envelope('success', context)
        result['data'] = data
        return result

    def get_stage_config(self, key: str, default: Any = None) -> Any:
        """Config value for ``<stage_name>_<key>``, falling back to ``key``."""
        stage_key = f"{self.stage_name}_{key}"
        if stage_key in self.config:
            return self.config[stage_key]
        return self.config.get(key, default)

"""
Sequence Generation Stage - one 3-email sequence for one contact
"""

from typing import Any, Dict, List

from .base_stage import BaseStage
from ..schemas import (
    GenerationConfig,
    SchemaValidationError,
    safe_validate_request,
    safe_validate_sequence,
)
from ..utils.email_rules import validate_sequence
from ..utils.json_extraction import SequenceParseError, extract_json_with_strategy
from ..utils.llm_client import UpstreamServiceError


class SequenceGenerationStage(BaseStage):
    """
    Builds the prompts for one account/contact pair, drains the model
    stream, extracts the email array and attaches advisory checks.

    Schema and rulebook findings never fail the stage; only request
    validation, upstream and parse errors do.
    """

    HANDLED_ERRORS = (SchemaValidationError, UpstreamServiceError, SequenceParseError)

    def validate_input(self, context: Dict[str, Any]) -> bool:
        return safe_validate_request(context.get('input_data', {})).success

    def _request_from(self, context: Dict[str, Any]):
        result = safe_validate_request(context.get('input_data', {}))
        if not result.success:
            raise SchemaValidationError(result.errors)
        return result.data

    def _generation_config(self, request) -> GenerationConfig:
        if request.config is not None:
            return request.config
        return GenerationConfig(
            model=self.config.get('llm_model', 'gpt-4.1-mini'),
            temperature=self.config.get('temperature', 0.7),
            min_words=self.config.get('min_words', 150),
            max_words=self.config.get('max_words', 200),
            include_klas_evidence=self.config.get('include_klas_evidence', True),
            require_warmth_phrase=self.config.get('require_warmth_phrase', True),
        )

    @staticmethod
    def _ensure_email_array(parsed: Any) -> List[Dict[str, Any]]:
        if not isinstance(parsed, list) or not all(isinstance(item, dict) for item in parsed):
            raise SequenceParseError("Expected a JSON array of email objects")
        return parsed

    def execute(self, context: Dict[str, Any]) -> Dict[str, Any]:
        """
        Generate one sequence.

        Args:
            context: ``execution_id``, ``input_data`` (account, contact and
                optional config) and an optional ``on_chunk`` callback

        Returns:
            Success result whose data holds ``emails``, ``raw_text``,
            ``extraction_strategy``, ``schema_valid``, ``schema_errors`` and
            ``validation``; or an error result
        """
        try:
            request = self._request_from(context)
            generation = self._generation_config(request)

            system_prompt = self.prompt_manager.get_system_prompt()
            user_prompt = self.prompt_manager.get_user_prompt(request.account, request.contact, generation)

            raw_text = self.call_llm_with_system(
                system_prompt,
                user_prompt,
                on_chunk=context.get('on_chunk'),
                model=generation.model,
                temperature=generation.temperature,
                max_tokens=self.get_stage_config('max_output_tokens', 4000),
            )

            parsed, strategy = extract_json_with_strategy(raw_text)
            emails = self._ensure_email_array(parsed)
            self.logger.debug(f"Parsed {len(emails)} emails using {strategy} strategy")

            schema_report = safe_validate_sequence(emails)
            if not schema_report.success:
                self.logger.warning(f"Sequence for {request.contact.contact_id} failed schema checks")

            validation = validate_sequence(
                emails,
                min_words=generation.min_words,
                max_words=generation.max_words,
                require_warmth_phrase=generation.require_warmth_phrase,
            )
            if not validation.passed:
                self.logger.info(
                    f"Sequence for {request.contact.contact_id} has {len(validation.failures)} advisory rule failures"
                )

            return self.create_success_result({
                'contact_id': request.contact.contact_id,
                'emails': emails,
                'raw_text': raw_text,
                'extraction_strategy': strategy,
                'schema_valid': schema_report.success,
                'schema_errors': schema_report.errors,
                'validation': validation.to_dict(),
            }, context)

        except self.HANDLED_ERRORS as e:
            self.logger.warning(f"Sequence generation failed: {str(e)}")
            return self.create_error_result(e, context)

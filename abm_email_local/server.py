"""
HTTP surface for ABM Email Local.

FastAPI application exposing account/contact browsing, streamed single
sequence generation, NDJSON batch generation, validation, saved-sequence
storage and Word export. Build it with ``create_app(config)``.
"""

import json
from typing import Any, Iterator, Mapping, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from . import __version__
from .api import create_data_manager, create_orchestrator, create_store, generation_config_from, validate_emails
from .config.prompts import PromptManager
from .config.settings import ConfigManager
from .schemas import GenerationConfig, SchemaValidationError, flatten_errors, safe_validate_request, safe_validate_save_request
from .utils.contact_ranking import get_auto_selected_ids, rank_contacts
from .utils.data_manager import CampaignDataManager
from .utils.export import DOCX_MEDIA_TYPE, create_email_document, document_to_bytes, export_filename
from .utils.llm_client import LLMClient, UpstreamServiceError
from .utils.logger import get_logger
from .utils.storage import EmailStore
from .utils.validators import InputValidator

logger = get_logger("server")

NDJSON_MEDIA_TYPE = "application/x-ndjson"


def _error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, **extra})


async def _read_json(request: Request) -> Any:
    """Request body as JSON, or None when it does not parse."""
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _upstream_error_response(error: Exception) -> JSONResponse:
    if "API key" in str(error):
        return _error(500, "API key configuration error")
    return _error(500, "Email generation failed", message=str(error))


def create_app(
    config: Mapping[str, Any],
    *,
    llm_client: Optional[LLMClient] = None,
    store: Optional[EmailStore] = None,
    data_manager: Optional[CampaignDataManager] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Configuration dictionary (see ``api.build_config``)
        llm_client: Optional injected model client
        store: Optional saved-sequence store
        data_manager: Optional campaign data manager

    Returns:
        Configured FastAPI app
    """
    config = dict(config)
    app = FastAPI(title="ABM Email Generator", version=__version__)

    data_manager = data_manager or create_data_manager(config)
    store = store or create_store(config)
    validator = InputValidator()
    prompt_manager = PromptManager(ConfigManager(config.get("data_dir") or "./abm_email_data"))

    if llm_client is None and config.get("openai_api_key"):
        llm_client = LLMClient(
            api_key=config["openai_api_key"],
            model=config.get("llm_model", "gpt-4.1-mini"),
            base_url=config.get("llm_base_url"),
        )

    app.state.config = config
    app.state.store = store
    app.state.data_manager = data_manager

    # --- Health ---

    @app.get("/health")
    def health_check():
        return {"status": "ok", "version": __version__}

    # --- Accounts and contacts ---

    @app.get("/api/accounts")
    def list_accounts():
        return data_manager.get_account_list_items()

    @app.get("/api/accounts/{account_index}")
    def get_account(account_index: str):
        index = validator.validate_account_index(account_index)
        if index is None:
            return _error(400, "Invalid account index")
        account = data_manager.load_account(index)
        if account is None:
            return _error(404, "Account not found")
        return account

    @app.get("/api/contacts/{account_index}")
    def list_contacts(account_index: str, full: bool = False):
        index = validator.validate_account_index(account_index)
        if index is None:
            return _error(400, "Invalid account index")
        if full:
            return data_manager.load_contacts_for_account(index)
        return data_manager.get_contact_list_items(index)

    @app.get("/api/contacts/{account_index}/ranked")
    def ranked_contacts(account_index: str):
        index = validator.validate_account_index(account_index)
        if index is None:
            return _error(400, "Invalid account index")
        contacts = data_manager.get_contact_list_items(index)
        return {
            "contacts": rank_contacts(contacts),
            "autoSelected": get_auto_selected_ids(contacts),
        }

    # --- Generation ---

    @app.post("/api/generate-emails")
    async def generate_emails(request: Request):
        body = await _read_json(request)
        if body is None:
            return _error(400, "Invalid JSON in request body")

        validation = safe_validate_request(body)
        if not validation.success:
            return _error(400, "Invalid request body", details=validation.errors)

        if llm_client is None:
            return _error(500, "API key configuration error")

        generate_request = validation.data
        generation = generate_request.config or generation_config_from(config)
        messages = [
            {"role": "system", "content": prompt_manager.get_system_prompt()},
            {"role": "user", "content": prompt_manager.get_user_prompt(
                generate_request.account, generate_request.contact, generation
            )},
        ]
        chunks = llm_client.stream_chat_completion(
            messages,
            model=generation.model,
            temperature=generation.temperature,
            max_tokens=config.get("max_output_tokens", 4000),
        )

        # Pull the first chunk here so connection and auth failures become a JSON error
        try:
            first = await run_in_threadpool(next, chunks, None)
        except UpstreamServiceError as e:
            logger.error(f"Email generation error: {str(e)}")
            return _upstream_error_response(e)

        def stream_body() -> Iterator[str]:
            if first is None:
                return
            yield first
            try:
                yield from chunks
            except UpstreamServiceError as e:
                # Headers are already sent; aborting the transfer is the only error signal left
                logger.error(f"Stream aborted for {generate_request.contact.contact_id}: {str(e)}")
                raise

        return StreamingResponse(stream_body(), media_type="text/plain; charset=utf-8")

    @app.post("/api/generate-batch")
    async def generate_batch(request: Request):
        body = await _read_json(request)
        if not isinstance(body, dict):
            return _error(400, "Invalid JSON in request body")

        index = validator.validate_account_index(body.get("accountIndex"))
        if index is None:
            return _error(400, "Invalid accountIndex")

        account = data_manager.load_account(index)
        if account is None:
            return _error(404, "Account not found")

        try:
            generation = (
                GenerationConfig.model_validate(body["config"]) if body.get("config")
                else generation_config_from(config)
            )
        except ValidationError as e:
            return _error(400, "Invalid request body", details=flatten_errors(e))

        if llm_client is None:
            return _error(500, "API key configuration error")

        orchestrator = create_orchestrator(config, llm_client=llm_client, data_manager=data_manager)
        try:
            contacts = orchestrator.select_contacts(
                index,
                contact_ids=body.get("contactIds") or None,
                all_eligible=bool(body.get("allEligible")),
            )
        except ValueError as e:
            return _error(400, str(e))

        def events() -> Iterator[str]:
            for event in orchestrator.iter_generate(account, contacts, generation):
                yield json.dumps(event) + "\n"

        return StreamingResponse(events(), media_type=NDJSON_MEDIA_TYPE)

    @app.post("/api/validate")
    async def validate(request: Request):
        body = await _read_json(request)
        if not isinstance(body, dict):
            return _error(400, "Invalid JSON in request body")
        try:
            return validate_emails(body.get("emails"), config)
        except SchemaValidationError as e:
            return _error(400, "Invalid request body", details=e.errors)

    # --- Saved sequences ---

    @app.get("/api/emails")
    def list_emails(request: Request):
        raw_index = request.query_params.get("accountIndex")
        account_index = None
        if raw_index is not None:
            account_index = validator.validate_account_index(raw_index)
            if account_index is None:
                return _error(400, "Invalid accountIndex parameter")
        return store.list(account_index)

    @app.post("/api/emails")
    async def save_email(request: Request):
        body = await _read_json(request)
        if body is None:
            return _error(400, "Invalid JSON in request body")

        result = safe_validate_save_request(body)
        if not result.success:
            return _error(400, "Validation failed", details=result.errors)

        saved = store.save(result.data.to_store_payload())
        return JSONResponse(status_code=201, content=saved)

    @app.get("/api/emails/{email_id}")
    def get_email(email_id: str):
        email = store.get(email_id)
        if email is None:
            return _error(404, "Email not found")
        return email

    @app.delete("/api/emails/{email_id}")
    def delete_email(email_id: str):
        if not store.delete(email_id):
            return _error(404, "Email not found")
        return {"success": True, "id": email_id}

    # --- Export ---

    @app.post("/api/export")
    async def export_document(request: Request):
        body = await _read_json(request)
        if not isinstance(body, dict):
            return _error(400, "Invalid JSON in request body")

        if body.get("id"):
            saved = store.get(body["id"])
            if saved is None:
                return _error(404, "Email not found")
            body = {
                "contactName": saved["contactName"],
                "contactTitle": saved["contactTitle"],
                "accountName": saved["accountName"],
                "emails": saved["emails"],
            }

        contact_name = body.get("contactName")
        emails = body.get("emails")
        if not contact_name or not isinstance(emails, list) or not emails:
            return _error(400, "contactName and emails are required")

        required = ("email_number", "subject_line", "body", "word_count")
        if not all(isinstance(email, dict) and all(key in email for key in required) for email in emails):
            return _error(400, f"Each email needs {', '.join(required)}")

        document = create_email_document(
            contact_name,
            body.get("contactTitle") or "",
            body.get("accountName") or "",
            emails,
        )
        filename = export_filename(contact_name)
        return Response(
            content=document_to_bytes(document),
            media_type=DOCX_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return app


def run_server(config: Mapping[str, Any], host: str = "127.0.0.1", port: int = 8000) -> None:
    """Serve the app with uvicorn (blocking)."""
    logger.info(f"Starting server on {host}:{port}")
    uvicorn.run(create_app(config), host=host, port=port, log_level=str(config.get("log_level", "INFO")).lower())

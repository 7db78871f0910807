"""
Default Integration executor — outgoing HTTP calls made by integration steps.

  Webhook        arbitrary HTTP request, response fields mapped into variables
  Google Sheets  insert / update / read a row through the API host
  Email          send an email through the API host

Every call reports a success or error entry to the execution log and
returns the step's own outgoing edge, so a failing call never stalls the
conversation. In preview mode nothing leaves the process: the would-be
request is reported as an info entry instead.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import IntegrationConfig, get_settings
from engine.context import IntegrationContext
from models.schemas import (
    GoogleSheetsAction, GoogleSheetsStep, IntegrationStepType, LogEntry,
    SendEmailStep, StepBase, WebhookStep,
)
from services.sample_result import parse_answers, parse_sample_result
from services.variables import parse_variables
from utils.conditions import get_nested_value

logger = structlog.get_logger()

STATE_PLACEHOLDER = "{{state}}"


def _response_data(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class IntegrationExecutor:
    """
    Async callable ``(step, IntegrationContext) -> next edge id``.

    Transport errors are retried with exponential backoff; HTTP error
    statuses are not retried and are reported as-is.
    """

    def __init__(self, client: httpx.AsyncClient = None, config: IntegrationConfig = None):
        """
        Args:
            client: Shared httpx client. Created lazily when not supplied.
            config: Timeout and retry settings; defaults to the loaded settings.
        """
        self.config = config or get_settings().integrations
        self._client = client
        self._handlers = {
            IntegrationStepType.WEBHOOK.value: self._execute_webhook,
            IntegrationStepType.GOOGLE_SHEETS.value: self._execute_google_sheets,
            IntegrationStepType.EMAIL.value: self._execute_email,
        }

    async def __call__(self, step: StepBase, context: IntegrationContext) -> Optional[str]:
        handler = self._handlers.get(step.type)
        if handler is None:
            logger.warning("unsupported_integration_step", step_id=step.id, step_type=step.type)
            return step.outgoing_edge_id
        return await handler(step, context)

    # ── HTTP ──────────────────────────────────────────

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.retry_attempts)),
            wait=wait_exponential(multiplier=0.5, max=5),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                return await client.request(method, url, **kwargs)

    async def close(self):
        if self._client:
            await self._client.aclose()

    @staticmethod
    def _simulate(context: IntegrationContext, description: str, request: dict[str, Any]):
        logger.info("integration_simulated", step_id=context.step_id, description=description)
        context.on_new_log(LogEntry(status="info", description=description, details=request))

    # ── WEBHOOK ───────────────────────────────────────

    def _webhook_body(self, step: WebhookStep, context: IntegrationContext) -> dict[str, Any]:
        """Keyword arguments carrying the request body, if any."""
        body = step.options.body
        if not body:
            return {}
        if body.strip() == STATE_PLACEHOLDER:
            if context.is_preview or context.typebot is None:
                state = parse_sample_result(context.typebot, context.block_id) if context.typebot else {}
            else:
                state = parse_answers(context.typebot, context.result_values)
            return {"json": state}
        parsed = parse_variables(context.variables, body)
        try:
            return {"json": json.loads(parsed)}
        except ValueError:
            return {"content": parsed}

    async def _execute_webhook(self, step: WebhookStep, context: IntegrationContext) -> Optional[str]:
        options = step.options
        if not options.url:
            return step.outgoing_edge_id

        variables = context.variables
        url = parse_variables(variables, options.url)
        request = {
            "method": options.method.value,
            "url": url,
            "headers": {h.key: parse_variables(variables, h.value) for h in options.headers if h.key},
            "params": {q.key: parse_variables(variables, q.value) for q in options.query_params if q.key},
            **self._webhook_body(step, context),
        }

        if context.is_preview:
            self._simulate(context, "Webhook simulated in preview mode", request)
            return step.outgoing_edge_id

        try:
            response = await self._request(**request)
        except Exception as e:
            logger.error("webhook_failed", step_id=step.id, url=url, error=str(e))
            context.on_new_log(LogEntry(
                status="error", description="Webhook failed to execute", details=str(e),
            ))
            return step.outgoing_edge_id

        data = _response_data(response)
        if response.status_code >= 400:
            logger.warning("webhook_error_status", step_id=step.id, status_code=response.status_code)
            context.on_new_log(LogEntry(
                status="error",
                description="Webhook returned an error",
                details={"status_code": response.status_code, "response": data},
            ))
            return step.outgoing_edge_id

        context.on_new_log(LogEntry(
            status="success",
            description="Webhook successfully executed",
            details={"status_code": response.status_code, "response": data},
        ))
        values = {
            mapping.variable_id: get_nested_value(data, mapping.body_path) if mapping.body_path else data
            for mapping in options.response_variable_mapping
            if mapping.variable_id
        }
        if values:
            context.update_variables(values)
        return step.outgoing_edge_id

    # ── GOOGLE SHEETS ─────────────────────────────────

    async def _execute_google_sheets(self, step: GoogleSheetsStep, context: IntegrationContext) -> Optional[str]:
        options = step.options
        if not (options.action and options.spreadsheet_id and options.sheet_id):
            return step.outgoing_edge_id

        variables = context.variables
        url = (f"{context.api_host}/api/integrations/google-sheets"
               f"/spreadsheets/{options.spreadsheet_id}/sheets/{options.sheet_id}")
        values = {c.column: parse_variables(variables, c.value) for c in options.cells_to_insert if c.column}
        reference = None
        if options.reference_cell:
            reference = {
                "column": options.reference_cell.column,
                "value": parse_variables(variables, options.reference_cell.value),
            }

        if options.action == GoogleSheetsAction.INSERT_ROW:
            request = {"method": "POST", "url": url,
                       "json": {"credentialsId": options.credentials_id, "values": values}}
        elif options.action == GoogleSheetsAction.UPDATE_ROW:
            request = {"method": "PATCH", "url": url,
                       "json": {"credentialsId": options.credentials_id,
                                "referenceCell": reference, "values": values}}
        else:
            params = {"credentialsId": options.credentials_id,
                      "columns": [c.column for c in options.cells_to_extract if c.column]}
            if reference:
                params["referenceCell.column"] = reference["column"]
                params["referenceCell.value"] = reference["value"]
            request = {"method": "GET", "url": url, "params": params}

        if context.is_preview:
            self._simulate(context, f"Google Sheets '{options.action.value}' simulated in preview mode", request)
            return step.outgoing_edge_id

        try:
            response = await self._request(**request)
        except Exception as e:
            logger.error("google_sheets_failed", step_id=step.id, action=options.action.value, error=str(e))
            context.on_new_log(LogEntry(
                status="error", description="Google Sheets request failed", details=str(e),
            ))
            return step.outgoing_edge_id

        data = _response_data(response)
        if response.status_code >= 400:
            context.on_new_log(LogEntry(
                status="error",
                description=f"Google Sheets '{options.action.value}' failed",
                details={"status_code": response.status_code, "response": data},
            ))
            return step.outgoing_edge_id

        if options.action == GoogleSheetsAction.GET:
            row = data.get("values", data) if isinstance(data, dict) else {}
            extracted = {
                cell.variable_id: row.get(cell.column)
                for cell in options.cells_to_extract
                if cell.variable_id and isinstance(row, dict) and cell.column in row
            }
            if extracted:
                context.update_variables(extracted)
            description = "Successfully read data from the sheet"
        elif options.action == GoogleSheetsAction.UPDATE_ROW:
            description = "Successfully updated a row in the sheet"
        else:
            description = "Successfully inserted a row in the sheet"

        context.on_new_log(LogEntry(status="success", description=description))
        return step.outgoing_edge_id

    # ── EMAIL ─────────────────────────────────────────

    async def _execute_email(self, step: SendEmailStep, context: IntegrationContext) -> Optional[str]:
        options = step.options
        variables = context.variables
        recipients = [r for r in (parse_variables(variables, r).strip() for r in options.recipients) if r]
        if not recipients:
            return step.outgoing_edge_id

        request = {
            "method": "POST",
            "url": f"{context.api_host}/api/integrations/email",
            "json": {
                "credentialsId": options.credentials_id,
                "recipients": recipients,
                "subject": parse_variables(variables, options.subject),
                "body": parse_variables(variables, options.body),
            },
        }

        if context.is_preview:
            self._simulate(context, "Email simulated in preview mode", request)
            return step.outgoing_edge_id

        try:
            response = await self._request(**request)
        except Exception as e:
            logger.error("email_failed", step_id=step.id, error=str(e))
            context.on_new_log(LogEntry(
                status="error", description="Email not sent", details=str(e),
            ))
            return step.outgoing_edge_id

        if response.status_code >= 400:
            context.on_new_log(LogEntry(
                status="error",
                description="Email not sent",
                details={"status_code": response.status_code, "response": _response_data(response)},
            ))
        else:
            context.on_new_log(LogEntry(status="success", description="Email successfully sent"))
        return step.outgoing_edge_id

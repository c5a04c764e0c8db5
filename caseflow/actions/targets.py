"""Outbound collaborators invoked by the action executor."""

from __future__ import annotations

import abc
import logging
import uuid
from typing import Any, Mapping, Optional

import httpx

from ..models import ActionType

logger = logging.getLogger(__name__)


class ActionTarget(metaclass=abc.ABCMeta):
    """A side-effect service: ``execute(config, context) -> result``."""

    @abc.abstractmethod
    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
        """Perform the side effect and describe the outcome."""
        raise NotImplementedError


class RecordingTarget(ActionTarget):
    """Logs the outbound request and acknowledges it.

    Stands in for the notification, email, sms, document and inventory
    services until real collaborators are registered. Every request is kept
    in ``calls``.
    """

    def __init__(self, action_type: ActionType, fields: tuple[str, ...], flag: str) -> None:
        self.action_type = action_type
        self.fields = fields
        self.flag = flag
        self.calls: list[dict[str, Any]] = []

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
        request = {name: config.get(name) for name in self.fields}
        self.calls.append(request)
        logger.info(f"{self.action_type.value}: {request}")
        return {"type": self.action_type.value, self.flag: True, **request}


class DocumentTarget(RecordingTarget):
    def __init__(self) -> None:
        super().__init__(
            ActionType.CREATE_DOCUMENT, ("documentType", "template", "data"), "created"
        )

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
        result = await super().execute(config, context)
        result["documentId"] = str(uuid.uuid4())
        return result


class WebhookTarget(ActionTarget):
    """Outbound HTTP call with a bounded timeout.

    Transport failures are reported as ``{"success": False, "error": ...}``
    rather than raised.
    """

    def __init__(
        self, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self.timeout = timeout
        self._client = client

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
        url = config.get("url")
        if not url:
            return {"type": "webhook", "success": False, "error": "Webhook action requires URL"}
        method = str(config.get("method") or "POST").upper()
        headers = {"Content-Type": "application/json", **(config.get("headers") or {})}
        payload = config.get("payload")

        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning(f"Webhook {method} {url} failed: {exc!r}")
            return {"type": "webhook", "success": False, "error": str(exc) or repr(exc)}

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        return {
            "type": "webhook",
            "success": response.is_success,
            "status": response.status_code,
            "response": body,
        }


def default_targets(
    webhook_timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None
) -> dict[ActionType, ActionTarget]:
    """Build one target per action type."""

    return {
        ActionType.NOTIFICATION: RecordingTarget(
            ActionType.NOTIFICATION, ("recipients", "title", "message"), "sent"
        ),
        ActionType.ASSIGNMENT: RecordingTarget(
            ActionType.ASSIGNMENT, ("assigneeType", "assigneeId", "role"), "updated"
        ),
        ActionType.STATUS_UPDATE: RecordingTarget(
            ActionType.STATUS_UPDATE, ("status", "reason"), "updated"
        ),
        ActionType.FIELD_UPDATE: RecordingTarget(
            ActionType.FIELD_UPDATE, ("field", "value", "operation"), "updated"
        ),
        ActionType.WEBHOOK: WebhookTarget(timeout=webhook_timeout, client=client),
        ActionType.EMAIL: RecordingTarget(
            ActionType.EMAIL, ("to", "subject", "body", "template"), "sent"
        ),
        ActionType.SMS: RecordingTarget(ActionType.SMS, ("to", "message"), "sent"),
        ActionType.CREATE_DOCUMENT: DocumentTarget(),
        ActionType.UPDATE_INVENTORY: RecordingTarget(
            ActionType.UPDATE_INVENTORY, ("itemId", "operation", "quantity", "reason"), "updated"
        ),
    }

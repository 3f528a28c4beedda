# barbershop/whatsapp.py
"""
WhatsApp Cloud API messenger.

Sends plain text, reply-button and list messages. Transport failures surface as
InfrastructureError so callers decide whether a failed send matters.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from .errors import InfrastructureError
from .schemas import ButtonPrompt, ListPrompt

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.facebook.com"


class WhatsAppMessenger:
    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        api_version: str = "v18.0",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = f"{GRAPH_API_URL}/{api_version}/{phone_number_id}/messages"
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=15.0)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send_text(self, to: str, body: str) -> None:
        await self._post(to, {"type": "text", "text": {"preview_url": False, "body": body}})

    async def send_buttons(self, to: str, prompt: ButtonPrompt) -> None:
        interactive: Dict[str, Any] = {
            "type": "button",
            "body": {"text": prompt.body},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": button.id, "title": button.title}}
                    for button in prompt.buttons
                ]
            },
        }
        self._decorate(interactive, prompt.header, prompt.footer)
        await self._post(to, {"type": "interactive", "interactive": interactive})

    async def send_list(self, to: str, prompt: ListPrompt) -> None:
        interactive: Dict[str, Any] = {
            "type": "list",
            "body": {"text": prompt.body},
            "action": {
                "button": prompt.button_text,
                "sections": [
                    {
                        "title": section.title,
                        "rows": [row.model_dump(exclude_none=True) for row in section.rows],
                    }
                    for section in prompt.sections
                ],
            },
        }
        self._decorate(interactive, prompt.header, prompt.footer)
        await self._post(to, {"type": "interactive", "interactive": interactive})

    @staticmethod
    def _decorate(interactive: Dict[str, Any], header: Optional[str], footer: Optional[str]) -> None:
        if header:
            interactive["header"] = {"type": "text", "text": header[:60]}
        if footer:
            interactive["footer"] = {"text": footer[:60]}

    async def _post(self, to: str, message: Dict[str, Any]) -> None:
        payload = {"messaging_product": "whatsapp", "recipient_type": "individual", "to": to}
        payload.update(message)
        try:
            response = await self._client.post(self._url, json=payload, headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "WhatsApp API rejected %s message to %s: %s %s",
                message["type"],
                to,
                exc.response.status_code,
                exc.response.text,
            )
            raise InfrastructureError() from exc
        except httpx.HTTPError as exc:
            logger.error("WhatsApp API unreachable sending to %s: %s", to, exc)
            raise InfrastructureError() from exc


class LogMessenger:
    """Writes outbound messages to the log. Used when no API token is configured."""

    async def send_text(self, to: str, body: str) -> None:
        logger.info("-> %s: %s", to, body)

    async def send_buttons(self, to: str, prompt: ButtonPrompt) -> None:
        titles = ", ".join(button.title for button in prompt.buttons)
        logger.info("-> %s: %s [%s]", to, prompt.body, titles)

    async def send_list(self, to: str, prompt: ListPrompt) -> None:
        rows = ", ".join(row.title for section in prompt.sections for row in section.rows)
        logger.info("-> %s: %s [%s]", to, prompt.body, rows)

"""
TextBee SMS gateway client.

Uses httpx for async HTTP requests to the TextBee REST API.
"""

from typing import Any

import httpx

from urbanwatch.config import get_logger
from urbanwatch.errors import UpstreamIntegrationError

logger = get_logger(__name__)

TEXTBEE_API_BASE = "https://api.textbee.dev/api/v1"


def mask_phone_number(phone_number: str) -> str:
    """Keep the first four characters of a phone number and star the rest."""
    if len(phone_number) <= 4:
        return phone_number
    return phone_number[:4] + "*" * (len(phone_number) - 4)


def format_concern_assigned_message(concern: dict[str, Any]) -> str:
    """Build the SMS body sent to a purok leader for a new assignment."""
    location = concern.get("custom_location") or concern.get("address") or "Not specified"
    severity = (concern.get("severity") or "low").upper()
    description = concern.get("description") or concern.get("title") or ""
    if len(description) > 100:
        description = description[:97] + "..."

    return (
        f"UrbanWatch: New concern {concern.get('tracking_code')} assigned to you.\n"
        f"Category: {(concern.get('category') or 'other').title()}\n"
        f"Severity: {severity}\n"
        f"Location: {location}\n"
        f"{description}"
    )


class TextBeeClient:
    """
    Sends SMS through a TextBee Android gateway device.

    Each call posts to /gateway/devices/{device_id}/send-sms with the
    API key in the x-api-key header.
    """

    def __init__(
        self,
        api_key: str,
        device_id: str,
        base_url: str = TEXTBEE_API_BASE,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        """
        Initialize the TextBee client.

        Args:
            api_key: TextBee API key
            device_id: Registered gateway device ID
            base_url: API base URL
            http_client: Optional pre-configured httpx client
            timeout: Request timeout in seconds
        """
        self._api_key = api_key
        self._device_id = device_id
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def send_sms(self, recipients: list[str], message: str) -> dict[str, Any]:
        """
        Send one SMS to one or more recipients.

        Returns:
            Parsed JSON body of the TextBee response.

        Raises:
            UpstreamIntegrationError: On timeout, connection failure or a
                non-2xx response.
        """
        url = f"{self._base_url}/gateway/devices/{self._device_id}/send-sms"
        masked = [mask_phone_number(r) for r in recipients]

        try:
            response = await self._client.post(
                url,
                headers={"x-api-key": self._api_key},
                json={"recipients": recipients, "message": message},
            )
        except httpx.TimeoutException as e:
            logger.error("TextBee API timeout", recipients=masked, error=str(e))
            raise UpstreamIntegrationError(
                "Request to TextBee API timed out",
                service="textbee",
            ) from e
        except httpx.RequestError as e:
            logger.error("TextBee API request error", recipients=masked, error=str(e))
            raise UpstreamIntegrationError(
                f"Failed to connect to TextBee API: {e}",
                service="textbee",
            ) from e

        if response.is_success:
            logger.info("SMS sent", recipients=masked)
            return response.json() if response.content else {}

        logger.error(
            "TextBee send SMS error",
            status_code=response.status_code,
            recipients=masked,
            body=response.text[:200],
        )
        raise UpstreamIntegrationError(
            "TextBee rejected the SMS request",
            service="textbee",
            status_code=response.status_code,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client if we created it."""
        if self._owns_client:
            await self._client.aclose()

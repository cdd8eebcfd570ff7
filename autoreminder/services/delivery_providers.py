"""Email and SMS delivery providers.

Thin httpx clients for the SendGrid v3 mail API and the Twilio Messages
API. Each ``send`` returns the provider's message id or raises a
TransientDeliveryError / PermanentDeliveryError; retrying is the gateway's
job, not the provider's.
"""

import re
from typing import Any

import httpx

from autoreminder.config import Settings, settings
from autoreminder.core.errors import PermanentDeliveryError, TransientDeliveryError

_NON_DIGITS = re.compile(r"\D")


async def post_for_delivery(
    client: httpx.AsyncClient,
    url: str,
    *,
    provider: str,
    **kwargs: Any,
) -> httpx.Response:
    """POST to a provider and classify the failure modes.

    Timeouts, connection errors, 429 and 5xx are transient; any other
    non-2xx status is permanent.
    """
    try:
        response = await client.post(url, **kwargs)
    except httpx.TimeoutException as e:
        raise TransientDeliveryError(
            f"{provider} request timed out", error_class="timeout"
        ) from e
    except httpx.TransportError as e:
        raise TransientDeliveryError(
            f"{provider} unreachable: {e}", error_class="connection_error"
        ) from e

    code = response.status_code
    if code == 429 or code >= 500:
        raise TransientDeliveryError(
            f"{provider} error: {code}", error_class=f"http_{code}"
        )
    if code >= 400:
        raise PermanentDeliveryError(
            f"{provider} rejected request: {code} {response.text[:200]}",
            error_class=f"http_{code}",
        )
    return response


def normalize_phone(raw: str) -> str:
    """Normalize a phone number to E.164.

    10 digits get a +1 country code, 11 digits starting with 1 and anything
    longer than 11 digits just get a leading +.

    Raises:
        PermanentDeliveryError: If the number cannot be normalized.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if len(digits) > 11:
        return f"+{digits}"
    raise PermanentDeliveryError(
        f"Invalid phone number: {raw!r}", error_class="invalid_recipient"
    )


class EmailProvider:
    """SendGrid v3 ``/mail/send`` client."""

    name = "sendgrid"

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._settings = config or settings
        self._client = client or httpx.AsyncClient(
            base_url=self._settings.sendgrid_base_url,
            timeout=self._settings.delivery_timeout_seconds,
        )
        self._owns_client = client is None

    @property
    def is_configured(self) -> bool:
        return bool(self._settings.sendgrid_api_key and self._settings.email_from)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send(self, to: str, subject: str, body: str) -> str:
        if not self.is_configured:
            raise PermanentDeliveryError(
                "Email provider is not configured", error_class="not_configured"
            )
        if not to or "@" not in to:
            raise PermanentDeliveryError(
                f"Invalid email address: {to!r}", error_class="invalid_recipient"
            )

        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {
                "email": self._settings.email_from,
                "name": self._settings.email_from_name,
            },
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }
        response = await post_for_delivery(
            self._client,
            "/mail/send",
            provider=self.name,
            json=payload,
            headers={"Authorization": f"Bearer {self._settings.sendgrid_api_key}"},
        )
        return response.headers.get("X-Message-Id", "")


class SmsProvider:
    """Twilio Messages API client."""

    name = "twilio"

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._settings = config or settings
        self._client = client or httpx.AsyncClient(
            base_url=self._settings.twilio_base_url,
            timeout=self._settings.delivery_timeout_seconds,
        )
        self._owns_client = client is None

    @property
    def is_configured(self) -> bool:
        return bool(
            self._settings.twilio_account_sid
            and self._settings.twilio_auth_token
            and self._settings.twilio_from_number
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send(self, to: str, body: str) -> str:
        if not self.is_configured:
            raise PermanentDeliveryError(
                "SMS provider is not configured", error_class="not_configured"
            )
        number = normalize_phone(to)
        sid = self._settings.twilio_account_sid

        response = await post_for_delivery(
            self._client,
            f"/Accounts/{sid}/Messages.json",
            provider=self.name,
            data={
                "To": number,
                "From": self._settings.twilio_from_number,
                "Body": body,
            },
            auth=(sid, self._settings.twilio_auth_token),
        )
        return str(response.json().get("sid", ""))

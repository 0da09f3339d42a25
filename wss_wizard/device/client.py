"""
HTTP client for the device's wizard and admin endpoints.

Wraps httpx.AsyncClient and turns device error replies into typed
exceptions. Nothing here retries: a failed save against flash-backed
storage is left to the operator to repeat.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from wss_wizard.device.status import DeviceSnapshot

logger = logging.getLogger(__name__)

ADMIN_TOKEN_HEADER = "X-Admin-Token"


class DeviceError(RuntimeError):
    """Device rejected a request or could not be reached."""

    def __init__(self, message: str, status: int | None = None, code: str | None = None, detail: str | None = None):
        super().__init__(message)
        self.status = status
        self.code = code
        self.detail = detail


class DeviceUnreachableError(DeviceError):
    """Transport failure talking to the device."""


class AdminSessionError(DeviceError):
    """Admin session missing, invalid or expired."""


class SaveFailedError(DeviceError):
    """Device could not persist the submitted configuration."""


class WizardBlockedError(DeviceError):
    """Device refused to complete the wizard."""


class ProvisioningStartError(DeviceError):
    """Device refused to open the NFC provisioning window."""


SESSION_ERROR_CODES = frozenset({
    "admin_token_invalid",
    "admin_required",
    "invalid_password",
    "admin_nfc_required",
    "admin_password_not_set",
})


@dataclass
class DeviceConfig:
    """Connection settings for the device."""

    url: str = "http://192.168.4.1"
    timeout: float = 5.0


@dataclass
class DeviceResponse:
    status: int
    body: dict[str, Any]

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def error(self) -> str | None:
        value = self.body.get("error")
        return str(value) if value is not None else None


class DeviceClient:
    """
    Client for the device REST API.

    Holds the admin token (RAM only) and sends it with every request.
    """

    def __init__(self, config: DeviceConfig | None = None, transport: httpx.AsyncBaseTransport | None = None):
        """
        Initialize device client.

        Args:
            config: Device connection configuration
            transport: Optional httpx transport (tests)
        """
        self._config = config or DeviceConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._admin_token = ""

    @property
    def is_open(self) -> bool:
        return self._client is not None

    @property
    def admin_token(self) -> str:
        return self._admin_token

    @property
    def has_admin_session(self) -> bool:
        return bool(self._admin_token)

    async def start(self) -> None:
        """Open the HTTP client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._config.url,
            timeout=self._config.timeout,
            transport=self._transport,
        )
        logger.info(f"Device client connected to {self._config.url}")

    async def stop(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("Device client closed")

    async def __aenter__(self) -> DeviceClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    @property
    def config(self) -> DeviceConfig:
        return self._config

    def reconfigure(self, config: DeviceConfig) -> None:
        """
        Point the client at new connection settings.

        An open client is retargeted in place. Moving to another device
        URL drops the admin session, since the token belongs to the old one.
        """
        if config.url != self._config.url:
            self.clear_admin_session()
        self._config = config
        if self._client is not None:
            self._client.base_url = httpx.URL(config.url)
            self._client.timeout = httpx.Timeout(config.timeout)
        logger.info(f"Device client now targets {config.url} (timeout {config.timeout}s)")

    def clear_admin_session(self) -> None:
        """Forget the admin token locally."""
        if self._admin_token:
            logger.info("Admin session cleared")
        self._admin_token = ""

    async def get_status(self) -> DeviceSnapshot:
        """Fetch and parse the device status document."""
        response = await self._request("GET", "/api/status")
        if not response.ok:
            raise DeviceError(
                f"Status request failed: {response.error or response.status}",
                status=response.status,
                code=response.error,
            )
        return DeviceSnapshot.from_status(response.body)

    async def login(self, password: str) -> str:
        """
        Enter admin mode.

        Returns:
            The admin token, also kept for later requests
        """
        response = await self._request("POST", "/api/admin/login", {"password": password})
        if not response.ok:
            self.clear_admin_session()
            self._raise_session_error(response)
            raise DeviceError(
                f"Admin login failed: {response.error or response.status}",
                status=response.status,
                code=response.error,
            )

        self._admin_token = str(response.body.get("token") or "")
        if not self._admin_token:
            raise AdminSessionError("Admin login returned no token", status=response.status)

        logger.info("Admin session established")
        return self._admin_token

    async def logout(self) -> None:
        try:
            await self._request("POST", "/api/admin/logout", {})
        finally:
            self.clear_admin_session()

    async def save_step(self, step: str, data: dict[str, Any]) -> None:
        """Submit one wizard step's field map."""
        response = await self._request("POST", "/api/wizard/step", {"step": step, "data": data})
        if response.ok:
            logger.info(f"Wizard step '{step}' saved ({len(data)} fields)")
            return

        self._raise_session_error(response)
        self._raise_save_error(response)
        raise DeviceError(
            f"Wizard step '{step}' rejected: {response.error or response.status}",
            status=response.status,
            code=response.error,
        )

    async def complete_wizard(self) -> None:
        """Ask the device to leave setup-required."""
        response = await self._request("POST", "/api/wizard/complete", {})
        if response.ok:
            logger.info("Wizard completed on device")
            return

        self._raise_save_error(response)
        if response.status == 409:
            raise WizardBlockedError(
                f"Wizard completion blocked: {response.error}",
                status=response.status,
                code=response.error,
            )
        raise DeviceError(
            f"Wizard completion failed: {response.error or response.status}",
            status=response.status,
            code=response.error,
        )

    async def restart_wizard(self) -> None:
        """Put the device back into setup-required (admin only)."""
        await self.save_step("welcome", {"setup_completed": False})

    async def start_nfc_provisioning(self, mode: str = "add_admin") -> None:
        """Open the device's NFC provisioning window."""
        response = await self._request("POST", "/api/nfc/provision/start", {"mode": mode})
        if response.ok:
            logger.info(f"NFC provisioning window opened (mode {mode})")
            return

        self._raise_session_error(response)
        raise ProvisioningStartError(
            f"NFC provisioning start rejected: {response.error or response.status}",
            status=response.status,
            code=response.error,
        )

    async def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> DeviceResponse:
        if not self._client:
            raise RuntimeError("Client not initialized")

        headers = {ADMIN_TOKEN_HEADER: self._admin_token} if self._admin_token else {}

        try:
            response = await self._client.request(method, path, json=body, headers=headers)
        except httpx.TransportError as e:
            raise DeviceUnreachableError(f"Device unreachable: {e}") from e

        try:
            parsed = response.json()
        except ValueError:
            parsed = {"raw": response.text}
        if not isinstance(parsed, dict):
            parsed = {"raw": parsed}

        return DeviceResponse(status=response.status_code, body=parsed)

    def _raise_session_error(self, response: DeviceResponse) -> None:
        if response.status != 401 and response.error not in SESSION_ERROR_CODES:
            return

        self.clear_admin_session()
        raise AdminSessionError(
            f"Admin session rejected: {response.error or response.status}",
            status=response.status,
            code=response.error,
        )

    @staticmethod
    def _raise_save_error(response: DeviceResponse) -> None:
        if response.error == "save_failed":
            detail = response.body.get("detail")
            raise SaveFailedError(
                "Device failed to save settings",
                status=response.status,
                code=response.error,
                detail=str(detail) if detail else None,
            )

"""
Two-scan NFC admin-card provisioning.

After the device opens its provisioning window, the operator taps a card
twice. Each tap must be a successful scan whose marker is strictly newer
than the latest marker observed before it. A stale or repeated scan
notification is never read as a second tap, and a scan from before the
window opened is never read as the first one.

The card identity is not compared between the two taps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from wss_wizard.device.status import NfcStatus

logger = logging.getLogger(__name__)

PROVISIONING_ENDED_NOTICE = "Provisioning ended. Restart the scan."


class ProvisioningStage(str, Enum):
    """Stage of an admin-card provisioning session."""

    IDLE = "idle"
    WAITING_FIRST = "waiting_first"
    WAITING_CONFIRM = "waiting_confirm"
    CONFIRMED = "confirmed"


class CardRole(str, Enum):
    UNKNOWN = "unknown"
    USER = "user"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: str | None) -> CardRole:
        try:
            return cls(value or "unknown")
        except ValueError:
            return cls.UNKNOWN


@dataclass
class NfcProvisioningSession:
    """In-memory record of one provisioning attempt."""

    stage: ProvisioningStage = ProvisioningStage.IDLE
    start_scan_marker: int = 0
    first_scan_marker: int = 0
    confirmed_role: CardRole = CardRole.UNKNOWN


class NfcProvisioningStateMachine:
    """
    Drives the provisioning session from polled NFC status.

    observe() is fed every status snapshot; begin() is called once the
    device has accepted a start request.
    """

    def __init__(self):
        self._session = NfcProvisioningSession()
        self._last_seen_marker = 0
        self._message = ""

    @property
    def session(self) -> NfcProvisioningSession:
        return self._session

    @property
    def stage(self) -> ProvisioningStage:
        return self._session.stage

    @property
    def message(self) -> str:
        """Latest notice or failure explanation for the operator."""
        return self._message

    @property
    def last_seen_marker(self) -> int:
        return self._last_seen_marker

    @property
    def in_progress(self) -> bool:
        return self._session.stage in (
            ProvisioningStage.WAITING_FIRST,
            ProvisioningStage.WAITING_CONFIRM,
        )

    def begin(self) -> NfcProvisioningSession:
        """Open a fresh session baselined at the latest observed scan."""
        self._session = NfcProvisioningSession(
            stage=ProvisioningStage.WAITING_FIRST,
            start_scan_marker=self._last_seen_marker,
        )
        self._message = ""
        logger.info(f"NFC provisioning started (baseline marker {self._last_seen_marker})")
        return self._session

    def fail(self, message: str) -> None:
        """Record a failed start; the session stays idle."""
        self._session = NfcProvisioningSession()
        self._message = message
        logger.warning(f"NFC provisioning not started: {message}")

    def reset(self) -> None:
        self._session = NfcProvisioningSession()
        self._message = ""

    def observe(self, nfc: NfcStatus | None) -> str | None:
        """
        Apply one polled NFC status.

        Returns:
            A notice for the operator when the session was reset, else None
        """
        if nfc is None:
            return None

        # Markers are device uptime and restart from zero after a reboot
        marker = nfc.last_scan_ms
        self._last_seen_marker = marker

        session = self._session
        if not self.in_progress:
            return None

        if nfc.provisioning_active is False:
            self._session = NfcProvisioningSession()
            self._message = PROVISIONING_ENDED_NOTICE
            logger.info("NFC provisioning window closed before confirmation")
            return PROVISIONING_ENDED_NOTICE

        scan_ok = nfc.last_scan_result == "ok"

        if session.stage == ProvisioningStage.WAITING_FIRST:
            if scan_ok and marker > session.start_scan_marker:
                session.stage = ProvisioningStage.WAITING_CONFIRM
                session.first_scan_marker = marker
                logger.info(f"NFC first scan accepted (marker {marker})")

        elif session.stage == ProvisioningStage.WAITING_CONFIRM:
            if scan_ok and marker > session.first_scan_marker:
                session.stage = ProvisioningStage.CONFIRMED
                session.confirmed_role = CardRole.parse(nfc.last_role)
                logger.info(f"NFC card confirmed (role {session.confirmed_role.value})")

        return None

    def status_text(self) -> str:
        stage = self._session.stage
        if stage == ProvisioningStage.WAITING_FIRST:
            return "Tap the admin card on the reader."
        if stage == ProvisioningStage.WAITING_CONFIRM:
            return "Tap the same card again to confirm."
        if stage == ProvisioningStage.CONFIRMED:
            return f"Card confirmed (role: {self._session.confirmed_role.value})."
        return self._message or "Not provisioning."

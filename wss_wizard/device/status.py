"""
Device status snapshot.

Typed view of the device's /api/status document. Only the fields the
wizard consumes are modelled; everything else is ignored.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from wss_wizard.wizard.pins import DEFAULT_LD2410B_RX, DEFAULT_LD2410B_TX, DEFAULT_NFC_CS, DEFAULT_SD_CS

LD2410B_DEFAULT_BAUD = 256000


class _StatusModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class StorageStatus(_StatusModel):
    """SD card configuration as reported by the device."""

    sd_enabled: bool = True
    sd_cs_gpio: int = DEFAULT_SD_CS
    status: str = ""
    fallback_active: bool = False


class NfcStatus(_StatusModel):
    """NFC reader health, wiring and scan events."""

    interface: str = "spi"
    spi_cs_gpio: int = DEFAULT_NFC_CS
    spi_irq_gpio: int = -1
    spi_rst_gpio: int = -1
    health: str = ""
    provisioning_active: bool | None = None
    provisioning_remaining_s: int = 0
    last_scan_ms: int = 0
    last_scan_result: str = ""
    last_role: str = "unknown"
    lockout_active: bool = False
    lockout_remaining_s: int | None = None

    @property
    def reader_ok(self) -> bool:
        return self.health == "ok"

    def health_text(self) -> str:
        if self.health == "ok":
            label = "OK"
        elif self.health in ("unavailable", "disabled_cfg", "disabled_build"):
            label = "Unavailable"
        else:
            label = "Degraded"

        if self.provisioning_active is True:
            prov = "Yes"
        elif self.provisioning_active is False:
            prov = "No"
        else:
            prov = "Unknown"
        return f"{label} (Provisioning enabled: {prov})"


class Ld2410bStatus(_StatusModel):
    """UART motion sensor wiring."""

    rx_gpio: int = DEFAULT_LD2410B_RX
    tx_gpio: int = DEFAULT_LD2410B_TX
    baud: int = LD2410B_DEFAULT_BAUD


class SensorsStatus(_StatusModel):
    motion_kind: str = "gpio"
    ld2410b: Ld2410bStatus = Field(default_factory=Ld2410bStatus)


class OutputsStatus(_StatusModel):
    horn_gpio: int = -1
    light_gpio: int = -1


class DeviceSnapshot(_StatusModel):
    """
    Read-only device state from one status poll.

    Missing values default to "not done": setup is required until the
    device says otherwise.
    """

    setup_required: bool = True
    setup_last_step: str = "welcome"
    admin_mode: str | None = None
    admin_mode_active: bool = False
    admin_mode_remaining_s: int = 0
    state: str | None = None
    storage: StorageStatus = Field(default_factory=StorageStatus)
    nfc: NfcStatus | None = None
    sensors: SensorsStatus = Field(default_factory=SensorsStatus)
    outputs: OutputsStatus = Field(default_factory=OutputsStatus)

    @classmethod
    def from_status(cls, data: dict[str, Any]) -> DeviceSnapshot:
        """Parse a raw status document."""
        return cls.model_validate(data or {})

    @property
    def effective_admin_mode(self) -> str:
        if self.admin_mode:
            return self.admin_mode
        return "authenticated" if self.admin_mode_active else "off"

    @property
    def admin_authenticated(self) -> bool:
        return self.effective_admin_mode == "authenticated"

    def admin_mode_text(self) -> str:
        mode = self.effective_admin_mode
        if mode == "eligible":
            return f"Admin: Eligible ({self.admin_mode_remaining_s}s)"
        if mode == "authenticated":
            return f"Admin: Authenticated ({self.admin_mode_remaining_s}s)"
        return "Admin: Off"

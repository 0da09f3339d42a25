"""
Unsaved wizard drafts.

Each wizard step edits one draft section. Drafts are kept apart from the
device-reported snapshot: status polls never write into them. Wiring
fields are seeded from the device only for fields the operator has not
touched.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, PrivateAttr, field_validator

from wss_wizard.wizard.pins import (
    DEFAULT_LD2410B_RX,
    DEFAULT_LD2410B_TX,
    DEFAULT_NFC_CS,
    DEFAULT_SD_CS,
    LD2410B_SAFE_PINS,
    LD2410B_SAFE_TX_PINS,
    PN532_CS_SAFE_PINS,
    PN532_IRQ_SAFE_PINS,
    PN532_RST_SAFE_PINS,
    SD_CS_SAFE_PINS,
    UNUSED_PIN,
    pick_safe_pin,
)
from wss_wizard.wizard.steps import normalize_step

if TYPE_CHECKING:
    from wss_wizard.device.status import DeviceSnapshot

logger = logging.getLogger(__name__)

LD2410B_DEFAULT_BAUD = 256000
NFC_INTERFACES = ("spi", "i2c")
MOTION_KINDS = ("gpio", "ld2410b_uart")


def _check_pin(value: int, allowed: tuple[int, ...], name: str) -> int:
    if value not in allowed:
        raise ValueError(f"{name} must be one of {list(allowed)}, got {value}")
    return value


class WelcomeDraft(BaseModel):
    """Admin password and admin session timeout."""

    admin_password: str = ""
    admin_timeout_s: int = Field(default=600, ge=1)


class NetworkDraft(BaseModel):
    """Station join settings and the device's own AP password."""

    sta_enabled: bool = False
    sta_ssid: str = ""
    sta_password: str = ""
    ap_password: str = ""


class SensorsDraft(BaseModel):
    """Primary sensors, NFC reader wiring and control interfaces."""

    motion_enabled: bool = False
    door_enabled: bool = False
    nfc_interface: str = "spi"
    nfc_cs: int = DEFAULT_NFC_CS
    nfc_irq: int = UNUSED_PIN
    nfc_rst: int = UNUSED_PIN
    motion_kind: str = "gpio"
    ld2410b_rx: int = DEFAULT_LD2410B_RX
    ld2410b_tx: int = DEFAULT_LD2410B_TX
    ld2410b_baud: int = Field(default=LD2410B_DEFAULT_BAUD, ge=1200)
    web_controls_enabled: bool = False
    nfc_controls_enabled: bool = False

    @field_validator("nfc_interface")
    @classmethod
    def validate_interface(cls, v: str) -> str:
        if v not in NFC_INTERFACES:
            raise ValueError(f"NFC interface must be one of {NFC_INTERFACES}, got '{v}'")
        return v

    @field_validator("motion_kind")
    @classmethod
    def validate_motion_kind(cls, v: str) -> str:
        if v not in MOTION_KINDS:
            raise ValueError(f"Motion kind must be one of {MOTION_KINDS}, got '{v}'")
        return v

    @field_validator("nfc_cs")
    @classmethod
    def validate_nfc_cs(cls, v: int) -> int:
        return _check_pin(v, PN532_CS_SAFE_PINS, "NFC CS")

    @field_validator("nfc_irq")
    @classmethod
    def validate_nfc_irq(cls, v: int) -> int:
        return _check_pin(v, (UNUSED_PIN,) + PN532_IRQ_SAFE_PINS, "NFC IRQ")

    @field_validator("nfc_rst")
    @classmethod
    def validate_nfc_rst(cls, v: int) -> int:
        return _check_pin(v, (UNUSED_PIN,) + PN532_RST_SAFE_PINS, "NFC RST")

    @field_validator("ld2410b_rx")
    @classmethod
    def validate_ld2410b_rx(cls, v: int) -> int:
        return _check_pin(v, LD2410B_SAFE_PINS, "LD2410B RX")

    @field_validator("ld2410b_tx")
    @classmethod
    def validate_ld2410b_tx(cls, v: int) -> int:
        return _check_pin(v, LD2410B_SAFE_TX_PINS, "LD2410B TX")


class TimeDraft(BaseModel):
    timezone: str = ""
    set_time_now: bool = False


class StorageDraft(BaseModel):
    """SD logging; disabling SD falls back to the flash ring."""

    sd_enabled: bool = True
    sd_cs: int = DEFAULT_SD_CS
    sd_required: bool = False
    log_retention_days: int = Field(default=365, ge=1)

    @field_validator("sd_cs")
    @classmethod
    def validate_sd_cs(cls, v: int) -> int:
        return _check_pin(v, SD_CS_SAFE_PINS, "SD CS")


class OutputsDraft(BaseModel):
    horn_enabled: bool = False
    light_enabled: bool = False
    horn_gpio: int = Field(default=UNUSED_PIN, ge=-1, le=39)
    light_gpio: int = Field(default=UNUSED_PIN, ge=-1, le=39)


SECTION_MODELS: dict[str, type[BaseModel]] = {
    "welcome": WelcomeDraft,
    "network": NetworkDraft,
    "sensors": SensorsDraft,
    "time": TimeDraft,
    "storage": StorageDraft,
    "outputs": OutputsDraft,
}

SECRET_FIELDS = frozenset({"admin_password", "sta_password", "ap_password"})


class WizardDraft(BaseModel):
    """All unsaved wizard input, one section per editable step."""

    welcome: WelcomeDraft = Field(default_factory=WelcomeDraft)
    network: NetworkDraft = Field(default_factory=NetworkDraft)
    sensors: SensorsDraft = Field(default_factory=SensorsDraft)
    time: TimeDraft = Field(default_factory=TimeDraft)
    storage: StorageDraft = Field(default_factory=StorageDraft)
    outputs: OutputsDraft = Field(default_factory=OutputsDraft)

    _edited: set[str] = PrivateAttr(default_factory=set)

    @property
    def edited(self) -> frozenset[str]:
        """Fields changed by the operator since the last save, as "section.field"."""
        return frozenset(self._edited)

    def edit(self, section: str, **changes: Any) -> BaseModel:
        """
        Apply operator edits to one section.

        Raises:
            KeyError: Unknown section
            ValueError: Unknown field or invalid value (pydantic ValidationError)
        """
        if section not in SECTION_MODELS:
            raise KeyError(f"Unknown draft section: {section}")

        current: BaseModel = getattr(self, section)
        model = SECTION_MODELS[section]
        unknown = set(changes) - set(model.model_fields)
        if unknown:
            raise ValueError(f"Unknown {section} fields: {sorted(unknown)}")

        updated = model.model_validate({**current.model_dump(), **changes})
        setattr(self, section, updated)
        self._edited.update(f"{section}.{key}" for key in changes)
        return updated

    def section_values(self, step_id: str) -> dict[str, Any] | None:
        """Copy of one section's current field values, None for steps without a draft."""
        section = normalize_step(step_id)
        if section not in SECTION_MODELS:
            return None
        return getattr(self, section).model_dump()

    def mark_saved(self, step_id: str, submitted: dict[str, Any] | None = None) -> None:
        """
        Forget edit marks of a section once the device has accepted it.

        With submitted values, a field edited again after submission keeps
        its mark.
        """
        section = normalize_step(step_id)
        prefix = f"{section}."
        current = self.section_values(section) or {}

        def still_pending(key: str) -> bool:
            if not key.startswith(prefix):
                return True
            if submitted is None:
                return False
            name = key[len(prefix):]
            return current.get(name) != submitted.get(name)

        self._edited = {key for key in self._edited if still_pending(key)}

    def seed_from(self, snapshot: DeviceSnapshot) -> None:
        """Fill wiring fields from device state, skipping operator-edited fields."""
        seeds: dict[str, dict[str, Any]] = {
            "storage": {
                "sd_enabled": snapshot.storage.sd_enabled,
                "sd_cs": pick_safe_pin(snapshot.storage.sd_cs_gpio, SD_CS_SAFE_PINS, DEFAULT_SD_CS),
            },
            "sensors": {
                "ld2410b_rx": pick_safe_pin(
                    snapshot.sensors.ld2410b.rx_gpio, LD2410B_SAFE_PINS, DEFAULT_LD2410B_RX
                ),
                "ld2410b_tx": pick_safe_pin(
                    snapshot.sensors.ld2410b.tx_gpio, LD2410B_SAFE_TX_PINS, DEFAULT_LD2410B_TX
                ),
                "ld2410b_baud": snapshot.sensors.ld2410b.baud or LD2410B_DEFAULT_BAUD,
            },
            "outputs": {
                "horn_gpio": snapshot.outputs.horn_gpio,
                "light_gpio": snapshot.outputs.light_gpio,
            },
        }

        if snapshot.sensors.motion_kind in MOTION_KINDS:
            seeds["sensors"]["motion_kind"] = snapshot.sensors.motion_kind

        nfc = snapshot.nfc
        if nfc is not None:
            if nfc.interface in NFC_INTERFACES:
                seeds["sensors"]["nfc_interface"] = nfc.interface
            seeds["sensors"]["nfc_cs"] = pick_safe_pin(nfc.spi_cs_gpio, PN532_CS_SAFE_PINS, DEFAULT_NFC_CS)
            seeds["sensors"]["nfc_irq"] = pick_safe_pin(nfc.spi_irq_gpio, PN532_IRQ_SAFE_PINS, UNUSED_PIN)
            seeds["sensors"]["nfc_rst"] = pick_safe_pin(nfc.spi_rst_gpio, PN532_RST_SAFE_PINS, UNUSED_PIN)

        for section, values in seeds.items():
            current: BaseModel = getattr(self, section)
            fresh = {k: v for k, v in values.items() if f"{section}.{k}" not in self._edited}
            if not fresh:
                continue
            try:
                setattr(self, section, type(current).model_validate({**current.model_dump(), **fresh}))
            except ValueError as e:
                logger.warning(f"Ignoring device-reported {section} values: {e}")

    def payload_for(self, step_id: str, now: float | None = None) -> dict[str, Any]:
        """Build the field map submitted when saving a step."""
        step = normalize_step(step_id)

        if step == "welcome":
            return {
                "admin_web_password": self.welcome.admin_password,
                "admin_mode_timeout_s": self.welcome.admin_timeout_s,
            }

        if step == "network":
            return {
                "wifi_sta_enabled": self.network.sta_enabled,
                "wifi_sta_ssid": self.network.sta_ssid,
                "wifi_sta_password": self.network.sta_password,
                "wifi_ap_password": self.network.ap_password,
            }

        if step == "time":
            data: dict[str, Any] = {"timezone": self.time.timezone}
            if self.time.set_time_now:
                data["rtc_set_epoch_s"] = int(now if now is not None else time.time())
            return data

        if step == "storage":
            return {
                "sd_enabled": self.storage.sd_enabled,
                "sd_cs_gpio": self.storage.sd_cs,
                "sd_required": self.storage.sd_required,
                "log_retention_days": self.storage.log_retention_days,
            }

        if step == "sensors":
            sensors = self.sensors
            data = {
                "motion_enabled": sensors.motion_enabled,
                "door_enabled": sensors.door_enabled,
                "nfc_interface": sensors.nfc_interface,
                "nfc_spi_cs_gpio": sensors.nfc_cs,
                "nfc_spi_irq_gpio": sensors.nfc_irq,
                "nfc_spi_rst_gpio": sensors.nfc_rst,
                "motion_kind": sensors.motion_kind,
                "control_web_enabled": sensors.web_controls_enabled,
                "control_nfc_enabled": sensors.nfc_controls_enabled,
            }
            if sensors.motion_kind == "ld2410b_uart":
                data["motion_ld2410b_rx_gpio"] = sensors.ld2410b_rx
                data["motion_ld2410b_tx_gpio"] = sensors.ld2410b_tx
                data["motion_ld2410b_baud"] = sensors.ld2410b_baud
            return data

        if step == "outputs":
            data = {
                "horn_enabled": self.outputs.horn_enabled,
                "light_enabled": self.outputs.light_enabled,
            }
            if self.outputs.horn_gpio >= 0:
                data["horn_gpio"] = self.outputs.horn_gpio
            if self.outputs.light_gpio >= 0:
                data["light_gpio"] = self.outputs.light_gpio
            return data

        # review only records the step
        return {}

    def redacted(self) -> dict[str, Any]:
        """Draft contents with secrets reduced to a "set" marker."""
        out = self.model_dump()
        for section in out.values():
            for key in SECRET_FIELDS & set(section):
                section[key] = bool(section[key])
        return out

"""
GPIO pin conflict detection.

Storage chip-select, NFC reader lines, the UART motion sensor and the
alarm outputs are configured on different wizard steps but share one
pool of GPIO pins. Conflicts are recomputed from the complete current
draft so misconfiguration is caught before anything is saved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from wss_wizard.wizard.drafts import WizardDraft

# ESP32: GPIO 34-39 have no output driver
INPUT_ONLY_PINS = range(34, 40)

SD_CS_SAFE_PINS = (13, 16, 17, 25, 26, 27, 32, 33)
PN532_CS_SAFE_PINS = (16, 17, 25, 26, 27, 32, 33)
PN532_RST_SAFE_PINS = PN532_CS_SAFE_PINS
PN532_IRQ_SAFE_PINS = (32, 33, 34, 35, 36, 39)
LD2410B_SAFE_PINS = (4, 5, 16, 17, 18, 19, 21, 22, 23, 25, 26, 27, 32, 33)
LD2410B_SAFE_TX_PINS = tuple(pin for pin in LD2410B_SAFE_PINS if pin < 34)

DEFAULT_SD_CS = 13
DEFAULT_NFC_CS = 27
DEFAULT_LD2410B_RX = 16
DEFAULT_LD2410B_TX = 17
UNUSED_PIN = -1

# Roles that drive a level (chip-select, reset, TX, alarm outputs)
OUTPUT_ROLES = frozenset({"SD CS", "NFC CS", "NFC RST", "LD2410B TX", "Horn", "Light"})

FIXED_BUS_ROWS = (
    ("SPI bus (fixed)", "SCK 18, MISO 19, MOSI 23"),
    ("I2C bus (fixed)", "SDA 21, SCL 22"),
)


@dataclass(frozen=True)
class PinClaim:
    """A subsystem role claiming one GPIO pin. None or negative means unused."""

    role: str
    pin: int | None
    drives_output: bool | None = None

    @property
    def in_use(self) -> bool:
        return self.pin is not None and self.pin >= 0

    @property
    def requires_output(self) -> bool:
        if self.drives_output is not None:
            return self.drives_output
        return self.role in OUTPUT_ROLES


def is_input_only_pin(pin: int | None) -> bool:
    return pin is not None and pin in INPUT_ONLY_PINS


def pick_safe_pin(pin: int | None, safe_pins: Iterable[int], default: int) -> int:
    """Return pin if it is in the safe list, else the default."""
    return pin if pin is not None and pin in tuple(safe_pins) else default


def detect_pin_conflicts(claims: Iterable[PinClaim]) -> list[str]:
    """
    Find GPIO misconfigurations.

    Args:
        claims: Pin claims in declaration order

    Returns:
        One line per violation: pins claimed by several roles first, then
        output roles placed on input-only pins. Empty when none.
    """
    claims = list(claims)
    by_pin: dict[int, list[str]] = {}

    for claim in claims:
        if not claim.in_use:
            continue
        by_pin.setdefault(claim.pin, []).append(claim.role)  # type: ignore[arg-type]

    conflicts = [
        f"GPIO {pin} used by {' + '.join(roles)}"
        for pin, roles in by_pin.items()
        if len(roles) > 1
    ]

    for claim in claims:
        if claim.in_use and claim.requires_output and is_input_only_pin(claim.pin):
            conflicts.append(f"{claim.role} uses input-only GPIO {claim.pin}")

    return conflicts


def claims_from_draft(draft: WizardDraft) -> list[PinClaim]:
    """Collect every pin claim made by the current draft."""
    claims: list[PinClaim] = []

    storage = draft.storage
    claims.append(PinClaim("SD CS", storage.sd_cs if storage.sd_enabled else UNUSED_PIN))

    sensors = draft.sensors
    if sensors.nfc_interface == "spi":
        claims.append(PinClaim("NFC CS", sensors.nfc_cs))
        claims.append(PinClaim("NFC RST", sensors.nfc_rst))
        claims.append(PinClaim("NFC IRQ", sensors.nfc_irq))

    if sensors.motion_kind == "ld2410b_uart":
        claims.append(PinClaim("LD2410B RX", sensors.ld2410b_rx))
        claims.append(PinClaim("LD2410B TX", sensors.ld2410b_tx))

    outputs = draft.outputs
    claims.append(PinClaim("Horn", outputs.horn_gpio))
    claims.append(PinClaim("Light", outputs.light_gpio))

    return claims


def _pin_text(pin: int | None, empty: str = "Not used") -> str:
    if pin is None or pin < 0:
        return empty
    return str(pin)


def pin_map_rows(draft: WizardDraft) -> list[tuple[str, str]]:
    """Read-only pin map shown on the review step."""
    rows = list(FIXED_BUS_ROWS)

    storage = draft.storage
    rows.append(("SD CS", _pin_text(storage.sd_cs) if storage.sd_enabled else "Disabled"))

    sensors = draft.sensors
    if sensors.nfc_interface == "spi":
        rows.append(("NFC CS", _pin_text(sensors.nfc_cs)))
        rows.append(("NFC RST", _pin_text(sensors.nfc_rst)))
        rows.append(("NFC IRQ", _pin_text(sensors.nfc_irq)))

    if sensors.motion_kind == "ld2410b_uart":
        rows.append(("LD2410B RX", _pin_text(sensors.ld2410b_rx)))
        rows.append(("LD2410B TX", _pin_text(sensors.ld2410b_tx)))

    outputs = draft.outputs
    if outputs.horn_gpio is not None and outputs.horn_gpio >= 0:
        rows.append(("Horn", _pin_text(outputs.horn_gpio)))
    if outputs.light_gpio is not None and outputs.light_gpio >= 0:
        rows.append(("Light", _pin_text(outputs.light_gpio)))

    return rows

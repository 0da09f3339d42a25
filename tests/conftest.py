"""Pytest configuration and fixtures."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from wss_wizard.core.config import Config
from wss_wizard.core.controller import WizardController
from wss_wizard.device.client import DeviceClient
from wss_wizard.device.status import DeviceSnapshot
from wss_wizard.wizard.steps import StepSequencer
from wss_wizard.wizard.store import MemoryStore
from wss_wizard.wizard.tracking import CompletionFlagTracker, StepTouchedFlag, VisitedStepTracker


@pytest.fixture
def default_config():
    """Default configuration for testing."""
    return Config.default()


@pytest.fixture
def store():
    """Empty in-memory persistent store."""
    return MemoryStore()


@pytest.fixture
def visited(store: MemoryStore):
    return VisitedStepTracker(store)


@pytest.fixture
def flags(store: MemoryStore):
    return CompletionFlagTracker(store)


@pytest.fixture
def sequencer(store: MemoryStore, visited: VisitedStepTracker):
    return StepSequencer(visited, StepTouchedFlag(store))


@pytest.fixture
def status_doc() -> dict[str, Any]:
    """Status document of a device in setup with a healthy NFC reader."""
    return {
        "setup_required": True,
        "setup_last_step": "network",
        "admin_mode": "off",
        "admin_mode_remaining_s": 0,
        "state": "disarmed",
        "storage": {"sd_enabled": True, "sd_cs_gpio": 13, "status": "ok"},
        "nfc": {
            "interface": "spi",
            "spi_cs_gpio": 27,
            "spi_irq_gpio": -1,
            "spi_rst_gpio": -1,
            "health": "ok",
            "provisioning_active": False,
            "last_scan_ms": 100,
            "last_scan_result": "ok",
            "last_role": "user",
        },
        "sensors": {"motion_kind": "gpio", "ld2410b": {"rx_gpio": 16, "tx_gpio": 17, "baud": 256000}},
        "outputs": {"horn_gpio": -1, "light_gpio": -1},
    }


@pytest.fixture
def snapshot(status_doc: dict[str, Any]) -> DeviceSnapshot:
    return DeviceSnapshot.from_status(status_doc)


@pytest.fixture
def device_client(snapshot: DeviceSnapshot):
    """DeviceClient double: every request succeeds and status returns the snapshot."""
    client = MagicMock(spec=DeviceClient)
    client.has_admin_session = False
    client.get_status = AsyncMock(return_value=snapshot)
    client.save_step = AsyncMock(return_value=None)
    client.complete_wizard = AsyncMock(return_value=None)
    client.restart_wizard = AsyncMock(return_value=None)
    client.start_nfc_provisioning = AsyncMock(return_value=None)

    async def login(password: str) -> str:
        client.has_admin_session = True
        return "token-1"

    client.login = AsyncMock(side_effect=login)
    return client


@pytest.fixture
def controller(device_client: MagicMock, store: MemoryStore):
    return WizardController(device_client, store)

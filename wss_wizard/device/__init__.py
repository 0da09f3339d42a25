"""
Device collaborators: status snapshot, REST client and status poller.
"""

from wss_wizard.device.client import (
    AdminSessionError,
    DeviceClient,
    DeviceConfig,
    DeviceError,
    DeviceUnreachableError,
    ProvisioningStartError,
    SaveFailedError,
    WizardBlockedError,
)
from wss_wizard.device.poller import StatusPoller
from wss_wizard.device.status import DeviceSnapshot, NfcStatus

__all__ = [
    "AdminSessionError",
    "DeviceClient",
    "DeviceConfig",
    "DeviceError",
    "DeviceUnreachableError",
    "ProvisioningStartError",
    "SaveFailedError",
    "WizardBlockedError",
    "StatusPoller",
    "DeviceSnapshot",
    "NfcStatus",
]

"""Core modules for WSS Wizard."""

from wss_wizard.core.config import Config, WizardAppConfig
from wss_wizard.core.controller import (
    AdvanceStep,
    CommandResult,
    CompleteWizard,
    EditDraft,
    Login,
    RestartWizard,
    SaveStep,
    SelectStep,
    StartProvisioning,
    WizardController,
    WizardView,
)

__all__ = [
    "Config",
    "WizardAppConfig",
    "WizardController",
    "WizardView",
    "CommandResult",
    "SelectStep",
    "AdvanceStep",
    "EditDraft",
    "SaveStep",
    "CompleteWizard",
    "RestartWizard",
    "Login",
    "StartProvisioning",
]

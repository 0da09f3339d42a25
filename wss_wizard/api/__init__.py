"""Local HTTP API for the setup wizard."""

from wss_wizard.api.server import WizardServer

__all__ = ["WizardServer"]

"""
WSS Wizard - setup-wizard controller for the WSS security device.

Drives the device's multi-step provisioning flow (network, sensors,
storage, outputs, time, review) until it leaves "setup required".
"""

__version__ = "0.1.0"
__author__ = "WSS Contributors"

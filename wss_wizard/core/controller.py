"""
Wizard controller for WSS Wizard.

The context object the rest of the client talks to. It:
- Owns the step sequencer, progress trackers, completion gate and
  NFC provisioning state machine
- Keeps the unsaved draft apart from the device-reported snapshot
- Handles explicit commands (select/advance step, edit, save, complete,
  restart, login, start provisioning) and reports the outcome
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from pydantic import BaseModel, Field

from wss_wizard.device.client import (
    AdminSessionError,
    DeviceClient,
    DeviceError,
    DeviceUnreachableError,
    SaveFailedError,
    WizardBlockedError,
)
from wss_wizard.device.status import DeviceSnapshot
from wss_wizard.wizard.drafts import WizardDraft
from wss_wizard.wizard.gate import CompletionGate
from wss_wizard.wizard.nfc import NfcProvisioningStateMachine
from wss_wizard.wizard.pins import claims_from_draft, pin_map_rows
from wss_wizard.wizard.steps import STEP_IDS, WIZARD_STEPS, StepSequencer, normalize_step
from wss_wizard.wizard.store import PersistentStore
from wss_wizard.wizard.tracking import CompletionFlagTracker, StepTouchedFlag, VisitedStepTracker

logger = logging.getLogger(__name__)

DEFAULT_NFC_MODE = "add_admin"

BLOCKED_MESSAGES = {
    "primary_sensor_required": "Device requires a primary sensor to be enabled.",
    "admin_password_required": "Device requires an admin password.",
    "ap_password_change_required": "Device requires the AP password to be changed.",
}

SESSION_MESSAGES = {
    "admin_required": "Admin Authenticated required.",
    "invalid_password": "Admin password incorrect.",
    "admin_nfc_required": "Tap an admin card before logging in.",
    "admin_password_not_set": "Set the admin password first.",
}
SESSION_EXPIRED_MESSAGE = "Admin session expired. Log in again."


def save_failed_message(detail: str | None = None) -> str:
    if detail:
        return f"Save failed. Settings were not saved. ({detail})"
    return "Save failed. Settings were not saved."


def session_error_message(error: AdminSessionError) -> str:
    return SESSION_MESSAGES.get(error.code or "", SESSION_EXPIRED_MESSAGE)


def device_error_message(error: DeviceError) -> str:
    if isinstance(error, DeviceUnreachableError):
        return "Error: device unreachable"
    return f"Error: {error.code or error.status}"


# ============================================================================
# Commands
# ============================================================================


@dataclass(frozen=True)
class SelectStep:
    step: str


@dataclass(frozen=True)
class AdvanceStep:
    pass


@dataclass(frozen=True)
class EditDraft:
    section: str
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SaveStep:
    step: str | None = None  # None = current step


@dataclass(frozen=True)
class CompleteWizard:
    pass


@dataclass(frozen=True)
class RestartWizard:
    pass


@dataclass(frozen=True)
class Login:
    password: str


@dataclass(frozen=True)
class StartProvisioning:
    password: str | None = None  # None = reuse the current admin session


Command = Union[
    SelectStep, AdvanceStep, EditDraft, SaveStep, CompleteWizard, RestartWizard, Login, StartProvisioning
]


class WizardView(BaseModel):
    """Everything the rendering layer needs, recomputed on demand."""

    current_step: str
    current_label: str
    steps: list[dict[str, Any]]
    visited: list[str]
    is_last_step: bool
    setup_required: bool
    device_last_step: str | None = None
    can_complete: bool
    hint: str
    missing: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    flags: dict[str, bool] = Field(default_factory=dict)
    admin_mode: str = "Admin: Off"
    admin_session: bool = False
    nfc_stage: str
    nfc_status: str
    nfc_health: str = "Unknown"
    draft: dict[str, Any] = Field(default_factory=dict)
    error: str = ""
    notice: str = ""


@dataclass
class CommandResult:
    """Outcome of one command."""

    ok: bool
    message: str = ""
    view: WizardView | None = None


class WizardController:
    """
    Setup-wizard controller.

    Status snapshots only ever replace the device-side view; the draft is
    seeded from the device on first contact and after a successful save,
    and then only for fields the operator has not edited.
    """

    def __init__(
        self,
        client: DeviceClient,
        store: PersistentStore,
        nfc_mode: str = DEFAULT_NFC_MODE,
    ):
        self._client = client
        self._store = store
        self._nfc_mode = nfc_mode

        self.visited = VisitedStepTracker(store)
        self.touched = StepTouchedFlag(store)
        self.flags = CompletionFlagTracker(store)
        self.sequencer = StepSequencer(self.visited, self.touched)
        self.draft = WizardDraft()
        self.gate = CompletionGate(
            self.sequencer,
            self.visited,
            self.flags,
            lambda: claims_from_draft(self.draft),
        )
        self.nfc = NfcProvisioningStateMachine()
        self.snapshot: DeviceSnapshot | None = None

        self._draft_seeded = False
        self._error = ""
        self._notice = ""
        self._listeners: list[Callable[[WizardView], None]] = []

        self.sequencer.add_listener(self._on_step_changed)

    @property
    def client(self) -> DeviceClient:
        return self._client

    def add_listener(self, callback: Callable[[WizardView], None]) -> None:
        """Add callback invoked with a fresh view after every state change."""
        self._listeners.append(callback)

    # ========================================================================
    # Device status
    # ========================================================================

    def apply_snapshot(self, snapshot: DeviceSnapshot, reseed: bool = False) -> None:
        """Take in one status snapshot. Never touches operator edits."""
        self.snapshot = snapshot

        if reseed or not self._draft_seeded:
            self.draft.seed_from(snapshot)
            self._draft_seeded = True

        notice = self.nfc.observe(snapshot.nfc)
        if notice:
            self._notice = notice

        if not self.sequencer.initialized:
            initial = self.sequencer.current() if self.touched.is_set() else snapshot.setup_last_step
            self.sequencer.set_current(initial)
        else:
            self._notify()

    async def refresh(self, reseed: bool = False) -> DeviceSnapshot:
        snapshot = await self._client.get_status()
        self.apply_snapshot(snapshot, reseed=reseed)
        return snapshot

    # ========================================================================
    # Commands
    # ========================================================================

    async def dispatch(self, command: Command) -> CommandResult:
        """Run a command and return its outcome with the resulting view."""
        if isinstance(command, SelectStep):
            result = self.select_step(command.step)
        elif isinstance(command, AdvanceStep):
            result = self.advance()
        elif isinstance(command, EditDraft):
            result = self.edit_draft(command.section, **command.changes)
        elif isinstance(command, SaveStep):
            result = await self.save_step(command.step)
        elif isinstance(command, CompleteWizard):
            result = await self.complete()
        elif isinstance(command, RestartWizard):
            result = await self.restart()
        elif isinstance(command, Login):
            result = await self.login(command.password)
        elif isinstance(command, StartProvisioning):
            result = await self.start_provisioning(command.password)
        else:
            raise TypeError(f"Unknown command: {command!r}")

        result.view = self.view()
        return result

    def select_step(self, step: str) -> CommandResult:
        self._error = ""
        current = self.sequencer.set_current(step, touched=True)
        return CommandResult(ok=True, message=self.sequencer.label_for(current))

    def advance(self) -> CommandResult:
        self._error = ""
        if not self.sequencer.next():
            return CommandResult(ok=False, message="Already on the last step.")
        return CommandResult(ok=True, message=self.sequencer.label_for())

    def edit_draft(self, section: str, **changes: Any) -> CommandResult:
        """
        Apply operator edits to a draft section.

        Invalid input leaves the draft unchanged and is reported, not raised.
        """
        try:
            self.draft.edit(section, **changes)
        except (KeyError, ValueError) as e:
            self._error = f"Invalid input: {e}"
            self._notify()
            return CommandResult(ok=False, message=self._error)

        self._error = ""
        self._update_flags(section)
        self._notify()
        return CommandResult(ok=True)

    async def save_step(self, step: str | None = None) -> CommandResult:
        """Submit the draft for one step. The draft is kept whatever happens."""
        step_id = normalize_step(step or self.sequencer.current())
        payload = self.draft.payload_for(step_id)
        submitted = self.draft.section_values(step_id)
        self._error = ""

        try:
            await self._client.save_step(step_id, payload)
        except SaveFailedError as e:
            logger.warning(f"Saving step '{step_id}' failed on device")
            return self._fail(save_failed_message(e.detail))
        except AdminSessionError as e:
            return self._fail(session_error_message(e))
        except DeviceError as e:
            logger.warning(f"Saving step '{step_id}' rejected: {e}")
            return self._fail(device_error_message(e))

        self._update_flags(step_id)
        self.draft.mark_saved(step_id, submitted)
        await self._refresh_quietly()
        return CommandResult(ok=True, message=f"{self.sequencer.label_for(step_id)} saved.")

    async def complete(self) -> CommandResult:
        """Ask the device to complete setup, if the local gate allows it."""
        verdict = self.gate.evaluate()
        if not verdict.can_complete:
            return self._fail(verdict.hint)

        self._error = ""
        try:
            await self._client.complete_wizard()
        except SaveFailedError as e:
            return self._fail(save_failed_message(e.detail))
        except WizardBlockedError as e:
            logger.warning(f"Device blocked wizard completion: {e.code}")
            return self._fail(BLOCKED_MESSAGES.get(e.code or "", device_error_message(e)))
        except DeviceError as e:
            return self._fail(device_error_message(e))

        await self._refresh_quietly()
        return CommandResult(ok=True, message="Setup completed.")

    async def restart(self) -> CommandResult:
        """Put the device back into setup and clear all persisted progress."""
        self._error = ""
        try:
            await self._client.restart_wizard()
        except AdminSessionError as e:
            return self._fail(session_error_message(e))
        except DeviceError as e:
            return self._fail(device_error_message(e))

        self.visited.clear()
        self.flags.clear()
        self.touched.clear()
        self.draft = WizardDraft()
        self._draft_seeded = False
        self.nfc.reset()
        logger.info("Wizard restarted")

        self.sequencer.set_current(STEP_IDS[0])
        await self._refresh_quietly(reseed=True)
        return CommandResult(ok=True, message="Setup restarted.")

    async def login(self, password: str) -> CommandResult:
        self._error = ""
        try:
            await self._client.login(password)
        except AdminSessionError as e:
            return self._fail(session_error_message(e))
        except DeviceError as e:
            return self._fail(device_error_message(e))

        await self._refresh_quietly()
        return CommandResult(ok=True, message="Admin mode entered.")

    async def start_provisioning(self, password: str | None = None) -> CommandResult:
        """
        Start a fresh admin-card provisioning attempt.

        Authenticates (or reuses the admin session), asks the device to open
        its provisioning window and, once accepted, waits for the first tap.
        """
        nfc_status = self.snapshot.nfc if self.snapshot else None
        if nfc_status is None:
            return self._provisioning_failed("NFC reader status unknown. Wait for the device to report it.")
        if not nfc_status.reader_ok:
            return self._provisioning_failed("NFC reader not available.")

        if password:
            try:
                await self._client.login(password)
            except AdminSessionError as e:
                return self._provisioning_failed(session_error_message(e))
            except DeviceError as e:
                return self._provisioning_failed(device_error_message(e))
        elif not self._client.has_admin_session:
            return self._provisioning_failed("Admin login required to provision a card.")

        try:
            await self._client.start_nfc_provisioning(self._nfc_mode)
        except AdminSessionError as e:
            return self._provisioning_failed(session_error_message(e))
        except DeviceUnreachableError:
            return self._provisioning_failed("NFC reader not reachable.")
        except DeviceError as e:
            return self._provisioning_failed(f"Device rejected NFC provisioning ({e.code or e.status}).")

        self._notice = ""
        self.nfc.begin()
        self._notify()
        return CommandResult(ok=True, message=self.nfc.status_text())

    # ========================================================================
    # View
    # ========================================================================

    def view(self) -> WizardView:
        verdict = self.gate.evaluate()
        flags = self.flags.read()
        snapshot = self.snapshot
        current = self.sequencer.current()

        return WizardView(
            current_step=current,
            current_label=self.sequencer.label_for(current),
            steps=[{"id": s.id, "label": s.label, "order": s.order} for s in WIZARD_STEPS],
            visited=[s for s in STEP_IDS if s in self.visited.visited],
            is_last_step=self.sequencer.is_last(),
            setup_required=snapshot.setup_required if snapshot else True,
            device_last_step=normalize_step(snapshot.setup_last_step) if snapshot else None,
            can_complete=verdict.can_complete,
            hint=verdict.hint,
            missing=verdict.missing,
            conflicts=verdict.conflicts,
            flags={
                "admin_password_set": flags.admin_password_set,
                "ap_password_changed": flags.ap_password_changed,
                "primary_sensor_enabled": flags.primary_sensor_enabled,
                "all_visited": self.visited.all_visited(),
            },
            admin_mode=snapshot.admin_mode_text() if snapshot else "Admin: Off",
            admin_session=self._client.has_admin_session,
            nfc_stage=self.nfc.stage.value,
            nfc_status=self.nfc.status_text(),
            nfc_health=snapshot.nfc.health_text() if snapshot and snapshot.nfc else "Unknown",
            draft=self.draft.redacted(),
            error=self._error,
            notice=self._notice,
        )

    def pin_map(self) -> list[tuple[str, str]]:
        return pin_map_rows(self.draft)

    # ========================================================================
    # Internals
    # ========================================================================

    def _update_flags(self, step_id: str) -> None:
        step = normalize_step(step_id)
        if step == "welcome":
            self.flags.update_admin_password(self.draft.welcome.admin_password)
        elif step == "network":
            self.flags.update_ap_password(self.draft.network.ap_password)
        elif step == "sensors":
            self.flags.update_primary_sensor(
                self.draft.sensors.motion_enabled,
                self.draft.sensors.door_enabled,
            )

    def _on_step_changed(self, step: str) -> None:
        self._update_flags(step)
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        view = self.view()
        for callback in self._listeners:
            callback(view)

    def _fail(self, message: str) -> CommandResult:
        self._error = message
        self._notify()
        return CommandResult(ok=False, message=message)

    def _provisioning_failed(self, message: str) -> CommandResult:
        self.nfc.fail(message)
        return self._fail(message)

    async def _refresh_quietly(self, reseed: bool = False) -> None:
        try:
            await self.refresh(reseed=reseed)
        except DeviceError as e:
            logger.debug(f"Status refresh after command failed: {e}")

"""
Tests for the wizard controller.

The device client is a MagicMock with AsyncMock requests (see conftest);
snapshots are fed in directly the way the poller would.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from wss_wizard.core.controller import (
    AdvanceStep,
    CompleteWizard,
    EditDraft,
    RestartWizard,
    SaveStep,
    SelectStep,
    StartProvisioning,
    WizardController,
    WizardView,
)
from wss_wizard.device.client import (
    AdminSessionError,
    DeviceError,
    DeviceUnreachableError,
    ProvisioningStartError,
    SaveFailedError,
    WizardBlockedError,
)
from wss_wizard.device.status import DeviceSnapshot
from wss_wizard.wizard.gate import NOT_LAST_STEP_HINT
from wss_wizard.wizard.nfc import PROVISIONING_ENDED_NOTICE, ProvisioningStage
from wss_wizard.wizard.steps import STEP_IDS
from wss_wizard.wizard.store import MemoryStore
from wss_wizard.wizard.tracking import STEP_TOUCHED_KEY, VISITED_STEPS_KEY


def with_nfc(snapshot: DeviceSnapshot, **changes) -> DeviceSnapshot:
    return snapshot.model_copy(update={"nfc": snapshot.nfc.model_copy(update=changes)})


def fill_requirements(controller: WizardController) -> None:
    controller.edit_draft("welcome", admin_password="correct horse")
    controller.edit_draft("network", ap_password="Sunflower42")
    controller.edit_draft("sensors", door_enabled=True)


def visit_all(controller: WizardController) -> None:
    for step in STEP_IDS:
        controller.select_step(step)


# =============================================================================
# Snapshots
# =============================================================================


class TestApplySnapshot:
    """Tests for taking in device status."""

    def test_first_snapshot_opens_device_step(self, controller: WizardController, snapshot):
        controller.apply_snapshot(snapshot)

        assert controller.sequencer.current() == "network"
        assert "network" in controller.visited.visited

    def test_touched_client_keeps_its_step(self, device_client, snapshot):
        store = MemoryStore({STEP_TOUCHED_KEY: "1"})
        controller = WizardController(device_client, store)

        controller.apply_snapshot(snapshot)
        assert controller.sequencer.current() == "welcome"

    def test_legacy_device_step_normalized(self, controller: WizardController, snapshot):
        controller.apply_snapshot(snapshot.model_copy(update={"setup_last_step": "power"}))
        assert controller.sequencer.current() == "outputs"

    def test_later_snapshots_do_not_change_step(self, controller: WizardController, snapshot):
        controller.apply_snapshot(snapshot)
        controller.select_step("time")

        controller.apply_snapshot(snapshot.model_copy(update={"setup_last_step": "storage"}))
        assert controller.sequencer.current() == "time"

    def test_polls_never_overwrite_draft(self, controller: WizardController, snapshot):
        controller.apply_snapshot(snapshot)
        changed = snapshot.model_copy(
            update={"storage": snapshot.storage.model_copy(update={"sd_cs_gpio": 25})}
        )

        controller.apply_snapshot(changed)
        assert controller.draft.storage.sd_cs == 13

    def test_listener_receives_view(self, controller: WizardController, snapshot):
        views = []
        controller.add_listener(views.append)

        controller.apply_snapshot(snapshot)
        assert views
        assert isinstance(views[-1], WizardView)
        assert views[-1].current_step == "network"

    @pytest.mark.asyncio
    async def test_refresh(self, controller: WizardController, device_client, snapshot):
        assert await controller.refresh() is snapshot
        device_client.get_status.assert_awaited_once()
        assert controller.snapshot is snapshot


# =============================================================================
# Navigation and edits
# =============================================================================


class TestNavigationAndEdits:
    def test_select_marks_touched(self, controller: WizardController, store: MemoryStore):
        result = controller.select_step("controls")

        assert result.ok is True
        assert controller.sequencer.current() == "sensors"
        assert store.get(STEP_TOUCHED_KEY) == "1"

    def test_advance_stops_at_last(self, controller: WizardController):
        controller.select_step("outputs")
        assert controller.advance().ok is True
        assert controller.advance().ok is False
        assert controller.sequencer.current() == "review"

    def test_edit_sets_sticky_flag(self, controller: WizardController):
        controller.edit_draft("welcome", admin_password="correct horse")
        controller.edit_draft("welcome", admin_password="")

        assert controller.flags.read().admin_password_set is True

    def test_factory_ap_password_does_not_count(self, controller: WizardController):
        controller.edit_draft("network", ap_password="ChangeMe-1234")
        assert controller.flags.read().ap_password_changed is False

    def test_invalid_edit_reported(self, controller: WizardController):
        result = controller.edit_draft("storage", sd_cs=2)

        assert result.ok is False
        assert result.message.startswith("Invalid input")
        assert controller.draft.storage.sd_cs == 13
        assert controller.view().error == result.message

    def test_unknown_section_reported(self, controller: WizardController):
        assert controller.edit_draft("review", anything=1).ok is False

    def test_view_redacts_passwords(self, controller: WizardController):
        controller.edit_draft("network", ap_password="Sunflower42")
        assert controller.view().draft["network"]["ap_password"] is True


# =============================================================================
# Save
# =============================================================================


class TestSaveStep:
    """Tests for saving a step."""

    @pytest.mark.asyncio
    async def test_save_current_step(self, controller: WizardController, device_client, snapshot):
        controller.apply_snapshot(snapshot)
        controller.edit_draft("network", ap_password="Sunflower42")

        result = await controller.save_step()

        assert result.ok is True
        assert result.message == "Network saved."
        step, payload = device_client.save_step.await_args.args
        assert step == "network"
        assert payload["wifi_ap_password"] == "Sunflower42"
        assert controller.draft.edited == frozenset()
        device_client.get_status.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_save_failure_keeps_draft(self, controller: WizardController, device_client):
        device_client.save_step.side_effect = SaveFailedError("failed", status=500, code="save_failed")
        controller.edit_draft("storage", sd_cs=25)

        result = await controller.save_step("storage")

        assert result.ok is False
        assert result.message == "Save failed. Settings were not saved."
        assert controller.draft.storage.sd_cs == 25
        assert "storage.sd_cs" in controller.draft.edited
        device_client.get_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_save_failure_detail(self, controller: WizardController, device_client):
        device_client.save_step.side_effect = SaveFailedError(
            "failed", status=500, code="save_failed", detail="nvs_write"
        )

        result = await controller.save_step("time")
        assert result.message == "Save failed. Settings were not saved. (nvs_write)"

    @pytest.mark.asyncio
    async def test_session_error(self, controller: WizardController, device_client):
        device_client.save_step.side_effect = AdminSessionError(
            "rejected", status=401, code="admin_token_invalid"
        )

        result = await controller.save_step("welcome")
        assert result.message == "Admin session expired. Log in again."

    @pytest.mark.asyncio
    async def test_other_device_error(self, controller: WizardController, device_client):
        device_client.save_step.side_effect = DeviceError("rejected", status=400, code="invalid_gpio")

        result = await controller.save_step("storage")
        assert result.message == "Error: invalid_gpio"

    @pytest.mark.asyncio
    async def test_unreachable(self, controller: WizardController, device_client):
        device_client.save_step.side_effect = DeviceUnreachableError("offline")

        result = await controller.save_step("storage")
        assert result.message == "Error: device unreachable"

    @pytest.mark.asyncio
    async def test_saved_value_survives_stale_refresh(self, controller: WizardController, device_client, snapshot):
        controller.apply_snapshot(snapshot)
        controller.edit_draft("storage", sd_cs=25)

        result = await controller.save_step("storage")

        assert result.ok is True
        assert controller.snapshot.storage.sd_cs_gpio == 13
        assert controller.draft.storage.sd_cs == 25
        assert controller.draft.edited == frozenset()

    @pytest.mark.asyncio
    async def test_edit_during_save_is_kept(self, controller: WizardController, device_client, snapshot):
        controller.apply_snapshot(snapshot)
        controller.edit_draft("storage", sd_cs=25)

        async def save_while_operator_types(step, payload):
            controller.edit_draft("storage", sd_cs=26)

        device_client.save_step.side_effect = save_while_operator_types

        result = await controller.save_step("storage")

        assert result.ok is True
        _, payload = device_client.save_step.await_args.args
        assert payload["sd_cs_gpio"] == 25
        assert controller.draft.storage.sd_cs == 26
        assert "storage.sd_cs" in controller.draft.edited

    @pytest.mark.asyncio
    async def test_refresh_failure_after_save_is_quiet(self, controller: WizardController, device_client):
        device_client.get_status.side_effect = DeviceUnreachableError("rebooting")

        result = await controller.save_step("storage")
        assert result.ok is True


# =============================================================================
# Complete and restart
# =============================================================================


class TestComplete:
    """Tests for completing setup."""

    @pytest.mark.asyncio
    async def test_blocked_until_last_step(self, controller: WizardController, device_client):
        fill_requirements(controller)
        visit_all(controller)
        controller.select_step("outputs")

        result = await controller.complete()

        assert result.ok is False
        assert result.message == NOT_LAST_STEP_HINT
        device_client.complete_wizard.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_blocked_by_missing_requirements(self, controller: WizardController, device_client):
        controller.select_step("review")

        result = await controller.complete()

        assert result.ok is False
        assert result.message.startswith("To complete: visit all steps")
        device_client.complete_wizard.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_blocked_by_pin_conflict(self, controller: WizardController, device_client):
        fill_requirements(controller)
        controller.edit_draft("storage", sd_cs=27)
        visit_all(controller)

        result = await controller.complete()

        assert result.ok is False
        assert result.message == "Pin conflicts: GPIO 27 used by SD CS + NFC CS."

    @pytest.mark.asyncio
    async def test_complete(self, controller: WizardController, device_client, snapshot):
        controller.apply_snapshot(snapshot)
        fill_requirements(controller)
        visit_all(controller)

        assert controller.view().can_complete is True
        result = await controller.complete()

        assert result.ok is True
        device_client.complete_wizard.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_device_refuses(self, controller: WizardController, device_client):
        fill_requirements(controller)
        visit_all(controller)
        device_client.complete_wizard.side_effect = WizardBlockedError(
            "blocked", status=409, code="primary_sensor_required"
        )

        result = await controller.complete()

        assert result.ok is False
        assert result.message == "Device requires a primary sensor to be enabled."


class TestRestart:
    """Tests for restarting setup."""

    @pytest.mark.asyncio
    async def test_restart_clears_progress(self, controller: WizardController, device_client, store):
        fill_requirements(controller)
        visit_all(controller)

        result = await controller.restart()

        assert result.ok is True
        device_client.restart_wizard.assert_awaited_once()
        assert controller.flags.read().all_set is False
        assert controller.visited.visited == frozenset({"welcome"})
        assert controller.touched.is_set() is False
        assert controller.sequencer.current() == "welcome"
        assert controller.draft.welcome.admin_password == ""
        assert set(store.to_dict()) == {VISITED_STEPS_KEY}

    @pytest.mark.asyncio
    async def test_restart_needs_admin(self, controller: WizardController, device_client):
        visit_all(controller)
        device_client.restart_wizard.side_effect = AdminSessionError(
            "rejected", status=403, code="admin_required"
        )

        result = await controller.restart()

        assert result.ok is False
        assert result.message == "Admin Authenticated required."
        assert controller.visited.all_visited() is True

    @pytest.mark.asyncio
    async def test_restart_expired_session(self, controller: WizardController, device_client):
        device_client.restart_wizard.side_effect = AdminSessionError(
            "rejected", status=401, code="admin_token_invalid"
        )

        result = await controller.restart()
        assert result.message == "Admin session expired. Log in again."


# =============================================================================
# NFC provisioning
# =============================================================================


class TestStartProvisioning:
    """Tests for starting admin-card provisioning."""

    @pytest.mark.asyncio
    async def test_requires_status(self, controller: WizardController, device_client):
        result = await controller.start_provisioning("correct horse")

        assert result.ok is False
        assert controller.nfc.stage == ProvisioningStage.IDLE
        device_client.start_nfc_provisioning.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reader_unavailable(self, controller: WizardController, device_client, snapshot):
        controller.apply_snapshot(with_nfc(snapshot, health="unavailable"))

        result = await controller.start_provisioning("correct horse")

        assert result.message == "NFC reader not available."
        assert controller.nfc.stage == ProvisioningStage.IDLE
        device_client.login.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_requires_admin_session(self, controller: WizardController, device_client, snapshot):
        controller.apply_snapshot(snapshot)

        result = await controller.start_provisioning()

        assert result.ok is False
        assert controller.nfc.stage == ProvisioningStage.IDLE
        device_client.start_nfc_provisioning.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_login_then_start(self, controller: WizardController, device_client, snapshot):
        controller.apply_snapshot(snapshot)

        result = await controller.start_provisioning("correct horse")

        assert result.ok is True
        device_client.login.assert_awaited_once_with("correct horse")
        device_client.start_nfc_provisioning.assert_awaited_once_with("add_admin")
        assert controller.nfc.stage == ProvisioningStage.WAITING_FIRST
        assert controller.nfc.session.start_scan_marker == 100

    @pytest.mark.asyncio
    async def test_existing_session_reused(self, controller: WizardController, device_client, snapshot):
        controller.apply_snapshot(snapshot)
        device_client.has_admin_session = True

        result = await controller.start_provisioning()

        assert result.ok is True
        device_client.login.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wrong_password(self, controller: WizardController, device_client, snapshot):
        controller.apply_snapshot(snapshot)
        device_client.login.side_effect = AdminSessionError("rejected", status=401, code="invalid_password")

        result = await controller.start_provisioning("wrong")

        assert result.message == "Admin password incorrect."
        assert controller.nfc.stage == ProvisioningStage.IDLE

    @pytest.mark.asyncio
    async def test_session_expired_on_start(self, controller: WizardController, device_client, snapshot):
        controller.apply_snapshot(snapshot)
        device_client.has_admin_session = True
        device_client.start_nfc_provisioning.side_effect = AdminSessionError(
            "rejected", status=401, code="admin_token_invalid"
        )

        result = await controller.start_provisioning()

        assert result.message == "Admin session expired. Log in again."
        assert controller.nfc.stage == ProvisioningStage.IDLE
        assert controller.nfc.message == result.message

    @pytest.mark.asyncio
    async def test_device_rejects_start(self, controller: WizardController, device_client, snapshot):
        controller.apply_snapshot(snapshot)
        device_client.has_admin_session = True
        device_client.start_nfc_provisioning.side_effect = ProvisioningStartError(
            "rejected", status=409, code="provision_start_failed"
        )

        result = await controller.start_provisioning()

        assert result.message == "Device rejected NFC provisioning (provision_start_failed)."
        assert controller.nfc.stage == ProvisioningStage.IDLE

    @pytest.mark.asyncio
    async def test_reader_unreachable(self, controller: WizardController, device_client, snapshot):
        controller.apply_snapshot(snapshot)
        device_client.has_admin_session = True
        device_client.start_nfc_provisioning.side_effect = DeviceUnreachableError("offline")

        result = await controller.start_provisioning()
        assert result.message == "NFC reader not reachable."

    @pytest.mark.asyncio
    async def test_polled_scans_drive_session(self, controller: WizardController, snapshot):
        controller.apply_snapshot(snapshot)
        await controller.start_provisioning("correct horse")

        controller.apply_snapshot(with_nfc(snapshot, provisioning_active=True, last_scan_ms=100))
        assert controller.nfc.stage == ProvisioningStage.WAITING_FIRST

        controller.apply_snapshot(with_nfc(snapshot, provisioning_active=True, last_scan_ms=101))
        assert controller.nfc.stage == ProvisioningStage.WAITING_CONFIRM

        controller.apply_snapshot(
            with_nfc(snapshot, provisioning_active=True, last_scan_ms=102, last_role="admin")
        )
        assert controller.nfc.stage == ProvisioningStage.CONFIRMED
        assert controller.view().nfc_status == "Card confirmed (role: admin)."

    @pytest.mark.asyncio
    async def test_window_closed_notice(self, controller: WizardController, snapshot):
        controller.apply_snapshot(snapshot)
        await controller.start_provisioning("correct horse")

        controller.apply_snapshot(with_nfc(snapshot, provisioning_active=False))

        assert controller.nfc.stage == ProvisioningStage.IDLE
        assert controller.view().notice == PROVISIONING_ENDED_NOTICE


# =============================================================================
# Dispatch
# =============================================================================


class TestDispatch:
    """Tests for command dispatch."""

    @pytest.mark.asyncio
    async def test_returns_view(self, controller: WizardController):
        result = await controller.dispatch(SelectStep("storage"))

        assert result.ok is True
        assert result.view is not None
        assert result.view.current_step == "storage"

    @pytest.mark.asyncio
    async def test_each_command(self, controller: WizardController, device_client, snapshot):
        controller.apply_snapshot(snapshot)

        assert (await controller.dispatch(AdvanceStep())).view.current_step == "sensors"
        assert (await controller.dispatch(EditDraft("sensors", {"motion_enabled": True}))).ok is True
        assert (await controller.dispatch(SaveStep())).ok is True
        assert (await controller.dispatch(CompleteWizard())).ok is False
        assert (await controller.dispatch(StartProvisioning("correct horse"))).ok is True
        assert (await controller.dispatch(RestartWizard())).ok is True

    @pytest.mark.asyncio
    async def test_unknown_command(self, controller: WizardController):
        with pytest.raises(TypeError):
            await controller.dispatch(MagicMock())

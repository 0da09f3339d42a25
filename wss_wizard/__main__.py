"""
WSS Wizard entry point.

Run with: python -m wss_wizard
Or: wss-wizard (if installed)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from wss_wizard import __version__
from wss_wizard.api.server import WizardServer
from wss_wizard.core.config import Config, ConfigChange
from wss_wizard.core.controller import WizardController
from wss_wizard.device.client import DeviceClient, DeviceConfig, DeviceError
from wss_wizard.device.poller import StatusPoller
from wss_wizard.wizard.store import FileStore

logger = logging.getLogger(__name__)


def build_controller(config: Config, client: DeviceClient) -> WizardController:
    store = FileStore(config.wizard.state_path)
    return WizardController(client, store, nfc_mode=config.wizard.nfc_provision_mode)


async def print_status(config: Config) -> int:
    """Fetch one status snapshot and print the wizard summary."""
    device = DeviceConfig(url=config.device.url, timeout=config.device.timeout_seconds)

    async with DeviceClient(device) as client:
        controller = build_controller(config, client)
        try:
            await controller.refresh()
        except DeviceError as e:
            print(f"Device at {config.device.url} not reachable: {e}")
            return 1

        view = controller.view()
        print(f"Device:         {config.device.url}")
        print(f"Setup required: {'yes' if view.setup_required else 'no'}")
        print(f"Device step:    {view.device_last_step}")
        print(f"Current step:   {view.current_label}")
        print(f"Visited:        {', '.join(view.visited) or '-'}")
        print(f"{view.admin_mode}")
        print(f"NFC reader:     {view.nfc_health}")
        print(f"Can complete:   {'yes' if view.can_complete else 'no'}")
        if view.hint:
            print(f"Hint:           {view.hint}")
        return 0


LIVE_SETTINGS = frozenset({
    "device.url",
    "device.timeout_seconds",
    "device.poll_interval_seconds",
    "system.log_level",
})


def apply_config_changes(
    config: Config,
    client: DeviceClient,
    poller: StatusPoller,
    changes: list[ConfigChange],
) -> None:
    """Push a reloaded configuration into the running client and poller."""
    if not changes:
        return

    paths = {change.path for change in changes}
    if paths & {"device.url", "device.timeout_seconds"}:
        client.reconfigure(DeviceConfig(url=config.device.url, timeout=config.device.timeout_seconds))
    if "device.poll_interval_seconds" in paths:
        poller.interval = config.device.poll_interval_seconds
    if "system.log_level" in paths:
        logging.getLogger().setLevel(config.system.log_level)

    for path in sorted(paths - LIVE_SETTINGS):
        logger.warning(f"Configuration change to {path} takes effect after restart")


async def run_wizard(config: Config) -> None:
    """Run the status poller and the local API server until signalled."""
    print(f"WSS Wizard v{__version__}")
    print(f"Device: {config.device.url}")

    device = DeviceConfig(url=config.device.url, timeout=config.device.timeout_seconds)
    client = DeviceClient(device)
    await client.start()

    controller = build_controller(config, client)
    poller = StatusPoller(
        fetch=client.get_status,
        on_snapshot=controller.apply_snapshot,
        interval=config.device.poll_interval_seconds,
    )
    server = WizardServer(
        controller=controller,
        poller=poller,
        host=config.server.host,
        port=config.server.port,
    )

    shutdown_event = asyncio.Event()

    def signal_handler():
        print("\nShutting down...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    def on_config_change(changes: list[ConfigChange]) -> None:
        # Called from the watchdog observer thread
        loop.call_soon_threadsafe(apply_config_changes, config, client, poller, changes)

    if config.source_path:
        config.enable_hot_reload(on_config_change)

    try:
        await server.start()
        print(f"Wizard API at http://{config.server.host}:{config.server.port}/api/wizard")
        print("Press Ctrl+C to stop")
        await shutdown_event.wait()
    finally:
        config.disable_hot_reload()
        await server.stop()
        await client.stop()


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="wss-wizard",
        description="Setup wizard controller for WSS security devices",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Configuration file path",
    )
    parser.add_argument("--device-url", default=None, help="Device base URL (e.g. http://192.168.4.1)")
    parser.add_argument("--state-file", default=None, help="Where wizard progress is persisted")
    parser.add_argument("--host", default=None, help="API server bind address")
    parser.add_argument("--port", type=int, default=None, help="API server port")
    parser.add_argument("--poll-interval", type=float, default=None, help="Seconds between status polls")
    parser.add_argument(
        "--status",
        action="store_true",
        help="Print device and wizard status once, then exit",
    )

    args = parser.parse_args()

    config_paths = [
        args.config,
        Path("config/wizard.yaml"),
        Path.home() / ".config/wss-wizard/config.yaml",
    ]

    config = None
    for path in config_paths:
        if path and path.exists():
            config = Config.load(path)
            break

    if config is None:
        if args.config:
            print(f"Config file not found: {args.config}")
            sys.exit(1)
        config = Config.default()

    overrides = {
        "device.url": args.device_url,
        "wizard.state_file": args.state_file,
        "server.host": args.host,
        "server.port": args.port,
        "device.poll_interval_seconds": args.poll_interval,
    }
    try:
        for key, value in overrides.items():
            if value is not None:
                config.set(key, value)
    except ValueError as e:
        print(f"Invalid option: {e}")
        sys.exit(1)

    errors = config.validate()
    if errors:
        print("Configuration errors:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)

    logging.basicConfig(
        level=config.system.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.status:
        sys.exit(asyncio.run(print_status(config)))

    try:
        asyncio.run(run_wizard(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()

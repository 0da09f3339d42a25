"""
Local API server for WSS Wizard.

Exposes the wizard controller to a rendering layer:
- Current wizard view (step, gate verdict, NFC status, redacted draft)
- Step selection, draft edits, save/complete/restart commands
- Admin login and NFC admin-card provisioning
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from wss_wizard import __version__
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
from wss_wizard.device.poller import StatusPoller
from wss_wizard.wizard.drafts import SECTION_MODELS
from wss_wizard.wizard.steps import is_known_step

logger = logging.getLogger(__name__)


class StepRequest(BaseModel):
    step: str


class SaveRequest(BaseModel):
    step: str | None = None


class PasswordRequest(BaseModel):
    password: str


class ProvisionRequest(BaseModel):
    password: str | None = None


def _result_response(result: CommandResult) -> JSONResponse:
    view = result.view.model_dump() if result.view else None
    return JSONResponse(
        content={"ok": result.ok, "message": result.message, "view": view},
        status_code=200 if result.ok else 400,
    )


@dataclass
class WizardServer:
    """
    FastAPI server around a WizardController.

    The poller, when given, is started and stopped with the server.
    """

    controller: WizardController
    poller: StatusPoller | None = None
    host: str = "127.0.0.1"
    port: int = 9540

    _app: FastAPI = field(default=None, init=False)  # type: ignore
    _server: uvicorn.Server | None = field(default=None, init=False)
    _serve_task: asyncio.Task | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self._app = self._create_app()

    @property
    def app(self) -> FastAPI:
        return self._app

    def _create_app(self) -> FastAPI:
        app = FastAPI(
            title="WSS Setup Wizard",
            version=__version__,
            docs_url=None,
            redoc_url=None,
        )
        controller = self.controller

        @app.middleware("http")
        async def add_cors_headers(request: Request, call_next):
            if request.method == "OPTIONS":
                response = Response()
            else:
                response = await call_next(request)
            response.headers["Access-Control-Allow-Origin"] = "*"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            return response

        # ====================================================================
        # Status
        # ====================================================================

        @app.get("/health")
        async def health_check() -> dict:
            poller = self.poller
            return {
                "status": "ok",
                "service": "wss-wizard",
                "device_seen": controller.snapshot is not None,
                "poll_failures": poller.failures if poller else 0,
            }

        @app.get("/api/wizard")
        async def get_wizard() -> WizardView:
            return controller.view()

        @app.get("/api/wizard/pin-map")
        async def get_pin_map() -> dict:
            rows = controller.pin_map()
            return {
                "rows": [{"function": name, "pin": pin} for name, pin in rows],
                "conflicts": controller.gate.conflicts(),
            }

        # ====================================================================
        # Navigation
        # ====================================================================

        @app.post("/api/wizard/step")
        async def select_step(request: StepRequest) -> JSONResponse:
            if not is_known_step(request.step):
                raise HTTPException(status_code=404, detail=f"Unknown step: {request.step}")
            return _result_response(await controller.dispatch(SelectStep(request.step)))

        @app.post("/api/wizard/next")
        async def next_step() -> JSONResponse:
            return _result_response(await controller.dispatch(AdvanceStep()))

        # ====================================================================
        # Draft and commands
        # ====================================================================

        @app.patch("/api/wizard/draft/{section}")
        async def edit_draft(section: str, changes: dict[str, Any]) -> JSONResponse:
            if section not in SECTION_MODELS:
                raise HTTPException(status_code=404, detail=f"Unknown draft section: {section}")

            result = await controller.dispatch(EditDraft(section, changes))
            if not result.ok:
                raise HTTPException(status_code=422, detail=result.message)
            return _result_response(result)

        @app.post("/api/wizard/save")
        async def save_step(request: SaveRequest | None = None) -> JSONResponse:
            step = request.step if request else None
            if step is not None and not is_known_step(step):
                raise HTTPException(status_code=404, detail=f"Unknown step: {step}")
            return _result_response(await controller.dispatch(SaveStep(step)))

        @app.post("/api/wizard/complete")
        async def complete() -> JSONResponse:
            return _result_response(await controller.dispatch(CompleteWizard()))

        @app.post("/api/wizard/restart")
        async def restart() -> JSONResponse:
            return _result_response(await controller.dispatch(RestartWizard()))

        @app.post("/api/admin/login")
        async def login(request: PasswordRequest) -> JSONResponse:
            return _result_response(await controller.dispatch(Login(request.password)))

        @app.post("/api/nfc/provision")
        async def start_provisioning(request: ProvisionRequest | None = None) -> JSONResponse:
            password = request.password if request else None
            return _result_response(await controller.dispatch(StartProvisioning(password)))

        return app

    async def start(self) -> None:
        """Start polling and the API server."""
        if self.poller:
            await self.poller.start()

        logger.info(f"Starting wizard API on {self.host}:{self.port}")
        config = uvicorn.Config(
            self._app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve())

    async def stop(self) -> None:
        if self.poller:
            await self.poller.stop()

        if self._server:
            self._server.should_exit = True
            if self._serve_task:
                await self._serve_task
                self._serve_task = None
            self._server = None
            logger.info("Wizard API stopped")

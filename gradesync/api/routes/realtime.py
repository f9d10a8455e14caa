"""
api/routes/realtime.py
----------------------
Realtime WebSocket gateway.

WS /ws: one long-lived session per browser client.

Frames are JSON text:

  server → client on connect:
      {"event": "app-version", "data": {"appVersion": 1718000000000}}
  client → server:
      {"event": "save-table", "ack": 7, "data": {"className": ..., ...}}
  server → client, only to the sender and only when "ack" was given:
      {"ack": 7, "data": {"success": true}}

Every request runs as its own task, so a slow PDF conversion never holds
up a save on the same socket. Outbound frames go through one queue per
session drained by a single sender task.

Closing a session only drops the session. Class databases stay cached in
the router; requests still in flight complete and their acks are dropped.
"""

import asyncio
import base64
import json
import uuid
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from gradesync.core.config import APP_VERSION
from gradesync.core.exceptions import ConversionError
from gradesync.core.logging import get_logger
from gradesync.db.router import TenantDatabaseRouter
from gradesync.schemas.document import GeneratePdfRequest
from gradesync.schemas.selection import SaveSelectionRequest
from gradesync.schemas.table import (
    ClassRequest,
    DeleteSubjectRequest,
    SaveTableRequest,
)
from gradesync.services.conversion_service import (
    INVALID_DOCUMENT_ERROR,
    INVALID_FILE_NAME_ERROR,
    MISSING_DOCUMENT_ERROR,
    ConversionPipeline,
)
from gradesync.services.mutation_service import MutationService
from gradesync.services.snapshot_store import SnapshotStore

logger = get_logger(__name__)

router = APIRouter(tags=["Realtime"])

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]

# Event names used by the original browser client.
EVENT_ALIASES = {
    "generatePdfOnServer": "generate-pdf",
    "saveTable": "save-table",
    "loadLatestCopy": "load-latest-copy",
    "loadAllSelectionsForClass": "load-all-selections",
    "deleteMatiereData": "delete-subject-data",
    "saveSelection": "save-selection",
}


def _cannot_connect(class_name: str) -> str:
    return f"Cannot connect to DB for {class_name}"


def _pdf_request_error(exc: ValidationError) -> str:
    """Most relevant message for a rejected generate-pdf payload."""
    document_errors = [
        error
        for error in exc.errors()
        if error["loc"][:1] in (("document",), ("docxBuffer",))
    ]
    if not document_errors:
        return INVALID_FILE_NAME_ERROR
    if any(
        error["type"] == "missing" or error.get("input") is None
        for error in document_errors
    ):
        return MISSING_DOCUMENT_ERROR
    return INVALID_DOCUMENT_ERROR


class ClientSession:
    """
    Connection state for one socket.

    Attributes:
        websocket: The accepted WebSocket.
        session_id: Random id used in logs only.
        outbox: Frames waiting for the sender task.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.session_id = uuid.uuid4().hex[:12]
        self.outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._closed = False

    async def send(self, message: dict[str, Any]) -> None:
        if not self._closed:
            await self.outbox.put(message)

    async def pump(self) -> None:
        """Drain the outbox onto the socket until the session closes."""
        while True:
            message = await self.outbox.get()
            await self.websocket.send_json(message)

    def close(self) -> None:
        self._closed = True


class RealtimeGateway:

    def __init__(
        self,
        databases: TenantDatabaseRouter,
        pipeline: ConversionPipeline,
        max_message_bytes: int = 100_000_000,
    ) -> None:
        self._databases = databases
        self._pipeline = pipeline
        self._max_message_bytes = max_message_bytes
        self._inflight: set[asyncio.Task] = set()
        self._handlers: dict[str, Handler] = {
            "generate-pdf": self.generate_pdf,
            "save-table": self.save_table,
            "load-latest-copy": self.load_latest_copy,
            "load-all-selections": self.load_all_selections,
            "delete-subject-data": self.delete_subject_data,
            "save-selection": self.save_selection,
        }

    # ── Session loop ──────────────────────────────────────────────────────────

    async def serve(self, websocket: WebSocket) -> None:
        await websocket.accept()
        session = ClientSession(websocket)
        logger.info("Client connected", session_id=session.session_id)

        sender = asyncio.create_task(session.pump())
        await session.send({"event": "app-version", "data": {"appVersion": APP_VERSION}})
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                frame = self._parse_frame(message.get("text"))
                if frame is None:
                    await session.send(
                        {"event": "error", "data": {"error": "Malformed message."}}
                    )
                    continue
                self._spawn(session, *frame)
        except WebSocketDisconnect:
            pass
        finally:
            session.close()
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.debug(
                    "Sender stopped on error", session_id=session.session_id, error=str(exc)
                )
            logger.info("Client disconnected", session_id=session.session_id)

    def _parse_frame(
        self, raw: Optional[str]
    ) -> Optional[tuple[str, Any, dict[str, Any]]]:
        if raw is None:
            logger.warning("Dropping non-text frame")
            return None
        if len(raw) > self._max_message_bytes:
            logger.warning("Dropping oversized frame", size=len(raw))
            return None
        try:
            frame = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            return None
        data = frame.get("data")
        return frame["event"], frame.get("ack"), data if isinstance(data, dict) else {}

    def _spawn(self, session: ClientSession, event: str, ack: Any, data: dict) -> None:
        task = asyncio.create_task(self._respond(session, event, ack, data))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _respond(
        self, session: ClientSession, event: str, ack: Any, data: dict
    ) -> None:
        try:
            reply = await self.dispatch(event, data)
        except Exception as exc:
            logger.error(
                "Unhandled error in realtime handler",
                event=event,
                session_id=session.session_id,
                error=str(exc),
                exc_info=True,
            )
            reply = {"error": "Internal server error"}
        if ack is not None:
            await session.send({"ack": ack, "data": reply})

    async def dispatch(self, event: str, data: dict[str, Any]) -> dict[str, Any]:
        """Run one named request and return its acknowledgement payload."""
        handler = self._handlers.get(EVENT_ALIASES.get(event, event))
        if handler is None:
            return {"error": f"Unknown event: {event}"}
        return await handler(data)

    # ── Handlers ──────────────────────────────────────────────────────────────

    async def generate_pdf(self, data: dict[str, Any]) -> dict[str, Any]:
        try:
            request = GeneratePdfRequest.model_validate(data)
        except ValidationError as exc:
            return {"error": _pdf_request_error(exc)}
        try:
            pdf = await self._pipeline.convert_document_to_pdf(
                request.document, request.file_name
            )
        except ConversionError as exc:
            return {"error": exc.message}
        return {"pdfData": base64.b64encode(pdf).decode("ascii")}

    async def save_table(self, data: dict[str, Any]) -> dict[str, Any]:
        try:
            request = SaveTableRequest.model_validate(data)
        except ValidationError:
            return {"error": "Missing data."}

        db = await self._databases.resolve(request.class_name)
        if db is None:
            return {"error": _cannot_connect(request.class_name)}
        try:
            await MutationService.save_table(db, request.sheet_name, request.data)
        except Exception as exc:
            logger.error("Error saving table", class_name=request.class_name, error=str(exc))
            return {"error": "Error saving table"}
        return {"success": True}

    async def load_latest_copy(self, data: dict[str, Any]) -> dict[str, Any]:
        try:
            request = ClassRequest.model_validate(data)
        except ValidationError:
            return {"success": False, "error": "Class name is required."}

        db = await self._databases.resolve(request.class_name)
        if db is None:
            return {"success": False, "error": _cannot_connect(request.class_name)}
        try:
            async with db.session() as session:
                tables = await SnapshotStore.load_latest_copy(session)
        except Exception as exc:
            logger.error(
                "Error loading latest copy", class_name=request.class_name, error=str(exc)
            )
            return {"success": False, "error": "Error loading saved data"}
        return {"success": True, "tables": tables}

    async def load_all_selections(self, data: dict[str, Any]) -> dict[str, Any]:
        try:
            request = ClassRequest.model_validate(data)
        except ValidationError:
            return {"success": False, "error": "Class name is required."}

        db = await self._databases.resolve(request.class_name)
        if db is None:
            return {"success": False, "error": _cannot_connect(request.class_name)}
        try:
            async with db.session() as session:
                selections = await SnapshotStore.load_all_selections(session)
        except Exception as exc:
            logger.error(
                "Error loading selections", class_name=request.class_name, error=str(exc)
            )
            return {"success": False, "error": "Server error while loading selections."}
        return {"success": True, "allSelections": selections}

    async def delete_subject_data(self, data: dict[str, Any]) -> dict[str, Any]:
        try:
            request = DeleteSubjectRequest.model_validate(data)
        except ValidationError:
            return {"error": "Missing class or subject name."}

        db = await self._databases.resolve(request.class_name)
        if db is None:
            return {"error": _cannot_connect(request.class_name)}
        try:
            await MutationService.delete_subject_data(db, request.sheet_name)
        except Exception as exc:
            logger.error(
                "Error deleting subject",
                class_name=request.class_name,
                sheet_name=request.sheet_name,
                error=str(exc),
            )
            return {"error": "Server error while deleting."}
        return {"success": True}

    async def save_selection(self, data: dict[str, Any]) -> dict[str, Any]:
        try:
            request = SaveSelectionRequest.model_validate(data)
        except ValidationError:
            return {"error": "Missing data."}

        db = await self._databases.resolve(request.class_name)
        if db is None:
            return {"error": _cannot_connect(request.class_name)}
        try:
            await MutationService.record_selection(
                db, request.sheet_name, request.cell_key, request.unit, request.resources
            )
        except Exception as exc:
            logger.error("Error saving selection", class_name=request.class_name, error=str(exc))
            return {"error": "Error saving selection"}
        return {"success": True}


@router.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket) -> None:
    gateway: RealtimeGateway = websocket.app.state.gateway
    await gateway.serve(websocket)

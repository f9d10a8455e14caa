"""
Integration tests for the realtime gateway.

Drives the full application over WS /ws with FastAPI's TestClient:
SQLite class databases under tmp_path and a mocked ConvertAPI.
"""

import base64
from itertools import count

import httpx
import pytest
from fastapi.testclient import TestClient

from gradesync.core.config import APP_VERSION, Settings
from gradesync.services.conversion_service import ConvertApiClient
from main import create_application

PDF = b"%PDF-1.7 rendered"
DOCX = b"PK\x03\x04 docx"

_ack_ids = count(1)


def convert_handler(request: httpx.Request) -> httpx.Response:
    if b"broken.docx" in request.content:
        return httpx.Response(400, json={"Code": 5001, "Message": "File is corrupted."})
    return httpx.Response(
        200,
        json={"Files": [{"FileName": "out.pdf", "FileData": base64.b64encode(PDF).decode()}]},
    )


def make_app(tmp_path, database_url):
    settings = Settings(
        DATABASE_URL=database_url,
        SCRATCH_DIR=str(tmp_path / "scratch"),
        CONVERTAPI_SECRET="test-secret",
    )
    client = ConvertApiClient(
        "test-secret",
        base_url="https://convert.test",
        transport=httpx.MockTransport(convert_handler),
    )
    return create_application(settings, conversion_client=client)


def request(ws, event: str, data: dict) -> dict:
    ack = next(_ack_ids)
    ws.send_json({"event": event, "ack": ack, "data": data})
    reply = ws.receive_json()
    assert reply["ack"] == ack
    return reply["data"]


@pytest.fixture
def client(tmp_path, database_url):
    with TestClient(make_app(tmp_path, database_url)) as test_client:
        yield test_client


@pytest.fixture
def ws(client):
    with client.websocket_connect("/ws") as websocket:
        hello = websocket.receive_json()
        assert hello == {"event": "app-version", "data": {"appVersion": APP_VERSION}}
        yield websocket


class TestConnection:

    def test_app_version_pushed_on_connect(self, client):
        with client.websocket_connect("/ws") as websocket:
            assert websocket.receive_json() == {
                "event": "app-version",
                "data": {"appVersion": APP_VERSION},
            }

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["appVersion"] == APP_VERSION

    def test_unknown_event(self, ws):
        assert request(ws, "drop-database", {}) == {"error": "Unknown event: drop-database"}

    def test_binary_frame(self, ws):
        ws.send_bytes(b"\x00\x01")

        assert ws.receive_json() == {"event": "error", "data": {"error": "Malformed message."}}
        assert request(ws, "load-latest-copy", {"className": "6e B"})["success"] is True

    def test_malformed_frame(self, ws):
        ws.send_text("not json")

        assert ws.receive_json() == {"event": "error", "data": {"error": "Malformed message."}}
        # Session keeps serving afterwards.
        assert request(ws, "load-latest-copy", {"className": "6e B"})["success"] is True


class TestTables:

    def test_save_then_load_latest_copy(self, ws):
        saved = request(
            ws, "save-table", {"className": "6e B", "sheetName": "Maths", "data": {"rows": [[14]]}}
        )
        loaded = request(ws, "load-latest-copy", {"className": "6e B"})

        assert saved == {"success": True}
        assert loaded == {
            "success": True,
            "tables": [{"matiere": "Maths", "data": {"rows": [[14]]}}],
        }

    def test_new_session_sees_saved_state(self, client):
        with client.websocket_connect("/ws") as first:
            first.receive_json()
            request(first, "save-table", {"className": "6e B", "sheetName": "SVT", "data": [1]})

        with client.websocket_connect("/ws") as second:
            second.receive_json()
            loaded = request(second, "load-latest-copy", {"className": "6e B"})

        assert loaded["tables"] == [{"matiere": "SVT", "data": [1]}]

    def test_save_table_missing_fields(self, ws):
        assert request(ws, "save-table", {"className": "6e B", "sheetName": "Maths"}) == {
            "error": "Missing data."
        }

    def test_load_latest_copy_requires_class(self, ws):
        assert request(ws, "load-latest-copy", {}) == {
            "success": False,
            "error": "Class name is required.",
        }

    def test_legacy_event_name(self, ws):
        saved = request(ws, "saveTable", {"className": "6e B", "sheetName": "Maths", "data": 1})

        assert saved == {"success": True}


class TestSelections:

    def test_empty_selections(self, ws):
        assert request(ws, "load-all-selections", {"className": "6e B"}) == {
            "success": True,
            "allSelections": {},
        }

    def test_save_selection_then_load(self, ws):
        saved = request(
            ws,
            "save-selection",
            {
                "className": "6e B",
                "sheetName": "Maths",
                "cellKey": "2-3",
                "unit": "Fractions",
                "resources": ["manuel p.12"],
            },
        )
        loaded = request(ws, "load-all-selections", {"className": "6e B"})

        assert saved == {"success": True}
        assert loaded["allSelections"] == {
            "Maths": {"2-3": {"unit": "Fractions", "resources": ["manuel p.12"]}}
        }


class TestDeleteSubject:

    def test_delete_removes_subject_everywhere(self, ws):
        request(ws, "save-table", {"className": "6e B", "sheetName": "Maths", "data": 1})
        request(ws, "save-table", {"className": "6e B", "sheetName": "SVT", "data": 2})
        request(
            ws,
            "save-selection",
            {"className": "6e B", "sheetName": "Maths", "cellKey": "1-1", "unit": "u"},
        )

        deleted = request(ws, "delete-subject-data", {"className": "6e B", "sheetName": "Maths"})
        tables = request(ws, "load-latest-copy", {"className": "6e B"})["tables"]
        selections = request(ws, "load-all-selections", {"className": "6e B"})["allSelections"]

        assert deleted == {"success": True}
        assert tables == [{"matiere": "SVT", "data": 2}]
        assert "Maths" not in selections

    def test_delete_resaved_subject(self, ws):
        request(ws, "save-table", {"className": "6e B", "sheetName": "Maths", "data": 1})
        request(ws, "save-table", {"className": "6e B", "sheetName": "Maths", "data": 2})

        request(ws, "delete-subject-data", {"className": "6e B", "sheetName": "Maths"})

        assert request(ws, "load-latest-copy", {"className": "6e B"})["tables"] == []

    def test_delete_last_subject(self, ws):
        request(ws, "save-table", {"className": "6e B", "sheetName": "Maths", "data": 1})
        request(ws, "save-table", {"className": "6e B", "sheetName": "SVT", "data": 2})

        request(ws, "delete-subject-data", {"className": "6e B", "sheetName": "SVT"})
        request(ws, "delete-subject-data", {"className": "6e B", "sheetName": "Maths"})

        assert request(ws, "load-latest-copy", {"className": "6e B"})["tables"] == []

    def test_delete_absent_subject_twice(self, ws):
        payload = {"className": "6e B", "sheetName": "Latin"}

        assert request(ws, "delete-subject-data", payload) == {"success": True}
        assert request(ws, "delete-subject-data", payload) == {"success": True}

    def test_delete_missing_fields(self, ws):
        assert request(ws, "delete-subject-data", {"className": "6e B"}) == {
            "error": "Missing class or subject name."
        }


class TestWithoutDatabase:

    def test_cannot_connect(self, tmp_path):
        app = make_app(tmp_path, database_url=None)
        with TestClient(app) as test_client:
            with test_client.websocket_connect("/ws") as websocket:
                websocket.receive_json()

                saved = request(
                    websocket, "save-table", {"className": "6e B", "sheetName": "M", "data": 1}
                )
                loaded = request(websocket, "load-all-selections", {"className": "6e B"})

        assert saved == {"error": "Cannot connect to DB for 6e B"}
        assert loaded == {"success": False, "error": "Cannot connect to DB for 6e B"}


class TestGeneratePdf:

    def test_returns_pdf_bytes(self, ws, tmp_path):
        reply = request(
            ws,
            "generate-pdf",
            {"document": base64.b64encode(DOCX).decode(), "fileName": "bulletin.docx"},
        )

        assert base64.b64decode(reply["pdfData"]) == PDF
        assert list((tmp_path / "scratch").iterdir()) == []

    def test_remote_error_message(self, ws, tmp_path):
        reply = request(
            ws,
            "generate-pdf",
            {"document": base64.b64encode(DOCX).decode(), "fileName": "broken.docx"},
        )

        assert reply == {"error": "File is corrupted."}
        assert list((tmp_path / "scratch").iterdir()) == []

    def test_missing_document(self, ws):
        assert request(ws, "generate-pdf", {"fileName": "bulletin.docx"}) == {
            "error": "Missing document data."
        }

    def test_null_document(self, ws):
        assert request(ws, "generate-pdf", {"document": None}) == {
            "error": "Missing document data."
        }

    def test_invalid_base64(self, ws):
        assert request(ws, "generate-pdf", {"document": "abc", "fileName": "a.docx"}) == {
            "error": "Invalid document data."
        }

    @pytest.mark.parametrize("file_name", [None, "x" * 300 + ".docx"])
    def test_invalid_file_name(self, ws, file_name):
        payload = {"document": base64.b64encode(DOCX).decode(), "fileName": file_name}

        assert request(ws, "generate-pdf", payload) == {"error": "Invalid file name."}

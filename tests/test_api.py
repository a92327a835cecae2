"""Tests for the REST API."""
from unittest.mock import patch

import pytest
import usb.core

RECEIPT_TEMPLATE = {
    "header": [{"type": "text", "content": "{{ shop }}", "alignment": "center", "style": "bold"}],
    "body": [{"type": "items_list"}],
    "footer": [{"type": "cut_paper"}],
}

RECEIPT_DATA = {
    "shop": "Cafe Central",
    "items": [{"name": "Espresso", "quantity": 2, "unit_price": "2.50", "total_price": 5}],
}


def lan_port(printer):
    return {"kind": "LAN", "address": "127.0.0.1", "tcp_port": printer.tcp_port}


@pytest.fixture
def template_id(client):
    response = client.post("/api/templates", json={
        "name": "Default", "description": "Counter receipt", "content": RECEIPT_TEMPLATE,
    })
    assert response.status_code == 201
    return response.get_json()["id"]


class TestIndex:
    """Tests for the root and driver listing."""

    def test_index(self, client):
        assert client.get("/").get_json() == {"name": "posprint", "api": "/api"}

    def test_drivers(self, client):
        drivers = client.get("/api/drivers").get_json()["drivers"]
        assert [d["model"] for d in drivers] == ["HPRT TP80K", "Xprinter XP-V330L"]


class TestTemplates:
    """Tests for template CRUD."""

    def test_create_and_get(self, client, template_id):
        data = client.get(f"/api/templates/{template_id}").get_json()
        assert data["name"] == "Default"
        assert data["content"]["body"] == [{"type": "items_list"}]
        assert data["variables"] == ["items", "shop"]

    def test_wrapped_content_is_unwrapped(self, client):
        response = client.post("/api/templates", json={
            "name": "Wrapped", "content": {"template": RECEIPT_TEMPLATE},
        })
        assert response.get_json()["content"]["header"] == RECEIPT_TEMPLATE["header"]

    @pytest.mark.parametrize("body", [{"content": RECEIPT_TEMPLATE}, {"name": "No content"}])
    def test_validation(self, client, body):
        assert client.post("/api/templates", json=body).status_code == 400

    def test_content_must_be_object(self, client):
        response = client.post("/api/templates", json={"name": "Bad", "content": ["header"]})
        assert response.status_code == 400
        assert "object" in response.get_json()["error"]

    def test_update_and_list(self, client, template_id):
        client.put(f"/api/templates/{template_id}", json={"name": "Renamed"})
        templates = client.get("/api/templates").get_json()["templates"]
        assert [t["name"] for t in templates] == ["Renamed"]

    def test_delete(self, client, template_id):
        assert client.delete(f"/api/templates/{template_id}").get_json() == {"success": True}
        assert client.get(f"/api/templates/{template_id}").status_code == 404


class TestPreview:
    """Tests for receipt previews."""

    def test_preview_stored_template(self, client, template_id):
        data = client.post("/api/preview", json={
            "template_id": template_id, "receipt_data": RECEIPT_DATA,
        }).get_json()
        lines = data["preview"].split("\n")
        assert lines[0] == "Cafe Central".center(32)
        assert "Espresso" in lines
        assert lines[-1] == "--- CUT ---"

    def test_preview_inline_template(self, client):
        data = client.post("/api/preview", json={
            "template": {"body": [{"type": "text", "content": "Hi {{ name }}"}]},
            "receipt_data": {"name": "Ana"},
        }).get_json()
        assert data["preview"] == "Hi Ana"
        assert data["variables"] == ["name"]

    def test_missing_template(self, client):
        assert client.post("/api/preview", json={"template_id": 999}).status_code == 404
        assert client.post("/api/preview", json={}).status_code == 400


class TestPrint:
    """Tests for printing and print history."""

    def test_print_to_printer(self, client, template_id, fake_printer):
        response = client.post("/api/print", json={
            "template_id": template_id,
            "receipt_data": RECEIPT_DATA,
            "port": lan_port(fake_printer),
        })
        assert response.status_code == 200
        data = response.get_json()
        assert data["success"]
        assert data["result"]["model"] == "HPRT TP80K"
        assert b"Cafe Central" in fake_printer.wait_for(3 + data["result"]["bytes_sent"])

        record = client.get(f"/api/history/{data['history_id']}").get_json()
        assert record["status"] == "success"
        assert record["template_name"] == "Default"
        assert record["model"] == "HPRT TP80K"
        assert record["port"] == lan_port(fake_printer)
        assert record["receipt_data"]["shop"] == "Cafe Central"
        assert "Espresso" in record["rendered_preview"]

    def test_failed_print_is_recorded(self, client, template_id, closed_port):
        response = client.post("/api/print", json={
            "template_id": template_id,
            "port": {"kind": "LAN", "address": "127.0.0.1", "tcp_port": closed_port},
            "model": "HPRT TP80K",
        })
        assert response.status_code == 500
        record = client.get(f"/api/history/{response.get_json()['history_id']}").get_json()
        assert record["status"] == "failed"
        assert record["error_message"]

    @pytest.mark.parametrize("port", [None, {"kind": "PIGEON"}, {"kind": "LAN"}, "192.168.1.5"])
    def test_bad_port(self, client, template_id, port):
        response = client.post("/api/print", json={"template_id": template_id, "port": port})
        assert response.status_code == 400
        assert "error" in response.get_json()

    def test_history_pagination_and_filter(self, client, template_id, closed_port):
        port = {"kind": "LAN", "address": "127.0.0.1", "tcp_port": closed_port}
        for _ in range(3):
            client.post("/api/print", json={"template_id": template_id, "port": port, "model": "HPRT TP80K"})

        page = client.get("/api/history?per_page=2").get_json()
        assert page["total"] == 3
        assert page["pages"] == 2
        assert page["has_next"] and not page["has_prev"]
        assert len(page["history"]) == 2

        assert client.get("/api/history?status=success").get_json()["total"] == 0
        assert client.get(f"/api/history?template_id={template_id}").get_json()["total"] == 3


class TestPrinters:
    """Tests for printer discovery and identification endpoints."""

    def test_identify(self, client, fake_printer):
        data = client.post("/api/printers/identify", json={"port": lan_port(fake_printer)}).get_json()
        assert data["status"] == "SUCCESS"
        assert data["data"] == "HPRT TP80K"
        assert data["model"] == "HPRT TP80K"
        assert data["port"] == lan_port(fake_printer)

    def test_identify_unreachable(self, client, closed_port):
        data = client.post("/api/printers/identify", json={
            "port": {"kind": "LAN", "address": "127.0.0.1", "tcp_port": closed_port},
        }).get_json()
        assert data["status"] == "ERROR"
        assert data["model"] is None

    def test_identify_usb_without_backend(self, client):
        with patch("usb.core.find", side_effect=usb.core.NoBackendError("No backend available")):
            response = client.post("/api/printers/identify", json={
                "port": {"kind": "USB", "vendor_id": "0525", "product_id": "a700"},
            })
        assert response.status_code == 200
        assert response.get_json()["status"] == "ERROR"

    def test_status(self, client, make_fake_printer):
        printer = make_fake_printer(identity=None, status=b"\x12")
        data = client.post("/api/printers/status", json={"port": lan_port(printer)}).get_json()
        assert data["status"]["online"]
        assert not data["status"]["paper_out"]

    def test_discover_passes_range(self, client):
        with patch("posprint.routes.api.discover_printers", return_value=["192.168.1.40"]) as discover:
            data = client.post("/api/printers/discover", json={"network_range": "192.168.1.0/28"}).get_json()
        assert data == {"printers": ["192.168.1.40"]}
        assert discover.call_args.args == ("192.168.1.0/28",)
        assert discover.call_args.kwargs["timeout_ms"] == 300

    def test_usb_listing(self, client):
        with patch("posprint.routes.api.find_known_devices", return_value=[]):
            assert client.get("/api/printers/usb").get_json() == {"printers": []}

    def test_autoconfigure_nothing_found(self, client):
        with patch("posprint.routes.api.AutoConfigurator.run", return_value=None):
            response = client.post("/api/printers/autoconfigure")
        assert response.status_code == 404
        assert not response.get_json()["success"]

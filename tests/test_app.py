import json

from order_tracker.api.generate_openapi import build_openapi_document, main as write_openapi
from order_tracker.core.settings import AppSettings


class TestAppSettings:
    def test_comma_separated_origins(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")
        assert AppSettings().CORS_ORIGINS == ["https://a.example", "https://b.example"]

    def test_json_origins(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", '["https://a.example"]')
        assert AppSettings().CORS_ORIGINS == ["https://a.example"]

    def test_blank_origins_fall_back_to_wildcard(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", " ")
        assert AppSettings().CORS_ORIGINS == ["*"]

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("REPORT_TOP_N", raising=False)
        settings = AppSettings()
        assert settings.REPORT_TOP_N == 10
        assert settings.JWT_ALGORITHM == "HS256"


class TestOpenApiDocument:
    def test_lists_rest_and_websocket_endpoints(self):
        document = build_openapi_document()

        assert "/api/v1/orders/items/{item_id}/stage" in document["paths"]
        assert document["x-websocket-endpoints"][0]["path"] == "/ws/kiosk"

    def test_writes_file(self, tmp_path):
        output = write_openapi([str(tmp_path / "out" / "openapi.json")])

        assert json.loads(output.read_text())["info"]["title"]

import base64

from app.services import join_links


def test_build_join_url_strips_trailing_slash():
    assert join_links.build_join_url("123456", "http://192.168.1.20:3000/") == "http://192.168.1.20:3000/join/123456"


def test_qr_data_url_is_png():
    url = join_links.join_qr_data_url("123456", "http://localhost:3000")
    prefix = "data:image/png;base64,"
    assert url.startswith(prefix)
    assert base64.b64decode(url[len(prefix):]).startswith(b"\x89PNG")


def test_qr_failure_returns_none(monkeypatch):
    class Broken:
        def __init__(self, **kwargs):
            pass

        def add_data(self, data):
            raise ValueError("too much data")

    monkeypatch.setattr(join_links.qrcode, "QRCode", Broken)
    assert join_links.join_qr_data_url("123456") is None

import io
import json
from typing import Callable, Dict, List, Tuple

import httpx
import pytest
from PIL import Image

from core.config import Settings
from core.context import build_services

OA_BASE = "https://oa.test:8280"
FEISHU_BASE = "https://feishu.test"


class FakeServer:
    """Routes requests by (method, path) and remembers every request it saw."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, path: str, responder=None, status: int = 200, **response_kwargs):
        """Register a callable, or build a fresh httpx.Response per request."""
        if responder is None:
            responder = lambda request: httpx.Response(status, **response_kwargs)
        self.routes[(method, path)] = responder

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.routes.get((request.method, request.url.path))
        if responder is None:
            return httpx.Response(404, text="no route")
        return responder(request)

    def calls(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def feishu_server() -> FakeServer:
    server = FakeServer()
    server.on("POST", "/open-apis/auth/v3/tenant_access_token/internal",
              json={"code": 0, "tenant_access_token": "t-internal", "expire": 7200})
    server.on("POST", "/open-apis/im/v1/images",
              json={"code": 0, "data": {"image_key": "img_v2_key"}})
    server.on("POST", "/open-apis/im/v1/messages",
              json={"code": 0, "data": {"message_id": "om_1"}})
    return server


def sent_messages(server: FakeServer) -> List[dict]:
    out = []
    for request in server.calls("/open-apis/im/v1/messages"):
        payload = json.loads(request.content)
        payload["receive_id_type"] = request.url.params["receive_id_type"]
        payload["content"] = json.loads(payload["content"])
        out.append(payload)
    return out


@pytest.fixture
def settings(tmp_path):
    return Settings(
        app_id="cli_test",
        app_secret="secret",
        feishu_base_url=FEISHU_BASE,
        oa_account="zhangsan",
        oa_password="p@ss word",
        oa_base_url=OA_BASE,
        cookie_file=str(tmp_path / "data" / ".oa-cookie"),
        verify_code_image=str(tmp_path / "data" / ".oa-verify-code.png"),
    )


@pytest.fixture
def portal():
    return FakeServer()


@pytest.fixture
def feishu():
    return feishu_server()


@pytest.fixture
def services(settings, portal, feishu):
    return build_services(settings, portal_transport=portal.transport, feishu_transport=feishu.transport)


@pytest.fixture
def png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (60, 20), (255, 255, 255)).save(buf, format="PNG")
    return buf.getvalue()

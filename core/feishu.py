import json
import time
import logging
from typing import Dict, Optional, Tuple
import httpx

logger = logging.getLogger(__name__)

TOKEN_REFRESH_MARGIN = 60
# Invalid or expired tenant_access_token
TOKEN_INVALID_CODES = {99991661, 99991663, 99991668}


class FeishuError(Exception):
    """Non-zero `code` in a Feishu Open API reply."""

    def __init__(self, code, msg: str = ""):
        super().__init__(f"Feishu API error {code}: {msg}")
        self.code = code
        self.msg = msg


class FeishuClient:
    def __init__(self, app_id: str, app_secret: str,
                 base_url: str = "https://open.feishu.cn",
                 marketplace_app: bool = False,
                 timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.app_id = app_id
        self.app_secret = app_secret
        self.base_url = base_url.rstrip("/")
        self.marketplace_app = marketplace_app
        self.timeout = timeout
        self.transport = transport
        self._tokens: Dict[str, Tuple[str, float]] = {}

    @property
    def configured(self) -> bool:
        return bool(self.app_id and self.app_secret)

    async def _post(self, path: str, token: Optional[str] = None, **kwargs) -> dict:
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.post(self.base_url + path, headers=headers, **kwargs)
        try:
            data = r.json()
        except ValueError:
            r.raise_for_status()
            raise FeishuError(r.status_code, r.text[:200])
        if data.get("code", 0) != 0:
            raise FeishuError(data.get("code"), data.get("msg", ""))
        return data

    async def _app_access_token(self) -> str:
        data = await self._post("/open-apis/auth/v3/app_access_token/internal",
                                json={"app_id": self.app_id, "app_secret": self.app_secret})
        return data["app_access_token"]

    def _cache_key(self, tenant_key: Optional[str]) -> str:
        # Self-built apps only ever act inside their own tenant
        return tenant_key if self.marketplace_app and tenant_key else ""

    async def _authed_post(self, path: str, tenant_key: Optional[str] = None, **kwargs) -> dict:
        token = await self.tenant_access_token(tenant_key)
        try:
            return await self._post(path, token=token, **kwargs)
        except FeishuError as e:
            if e.code in TOKEN_INVALID_CODES:
                logger.warning(f"Dropping rejected tenant_access_token: {e}")
                self._tokens.pop(self._cache_key(tenant_key), None)
            raise

    async def tenant_access_token(self, tenant_key: Optional[str] = None) -> str:
        cache_key = self._cache_key(tenant_key)
        cached = self._tokens.get(cache_key)
        if cached and cached[1] > time.monotonic():
            return cached[0]

        if cache_key:
            app_token = await self._app_access_token()
            data = await self._post("/open-apis/auth/v3/tenant_access_token",
                                    json={"app_access_token": app_token, "tenant_key": tenant_key})
        else:
            data = await self._post("/open-apis/auth/v3/tenant_access_token/internal",
                                    json={"app_id": self.app_id, "app_secret": self.app_secret})

        token = data.get("tenant_access_token")
        if not token:
            raise FeishuError(data.get("code"), "no tenant_access_token in response")
        expire = data.get("expire", 7200)
        self._tokens[cache_key] = (token, time.monotonic() + max(expire - TOKEN_REFRESH_MARGIN, 0))
        logger.info("Fetched tenant_access_token" + (f" for tenant {tenant_key}" if cache_key else ""))
        return token

    async def upload_image(self, image: bytes, filename: str = "verify.png",
                           mime_type: str = "image/png", tenant_key: Optional[str] = None) -> Optional[str]:
        """Upload an image for use in messages and return its image_key."""
        data = await self._authed_post("/open-apis/im/v1/images", tenant_key,
                                       data={"image_type": "message"},
                                       files={"image": (filename, image, mime_type)})
        logger.info(f"Uploaded image to Feishu: {data}")
        return (data.get("data") or {}).get("image_key") or data.get("image_key")

    async def send_message(self, receive_id: str, receive_id_type: str, msg_type: str,
                           content: dict, tenant_key: Optional[str] = None) -> dict:
        payload = {
            "receive_id": receive_id,
            "msg_type": msg_type,
            # Feishu wants content as a JSON string, not an object
            "content": json.dumps(content, ensure_ascii=False),
        }
        return await self._authed_post("/open-apis/im/v1/messages", tenant_key,
                                       params={"receive_id_type": receive_id_type}, json=payload)

    async def send_text(self, receive_id: str, receive_id_type: str, text: str,
                        tenant_key: Optional[str] = None) -> dict:
        return await self.send_message(receive_id, receive_id_type, "text", {"text": text}, tenant_key)

    async def send_image(self, receive_id: str, receive_id_type: str, image_key: str,
                         tenant_key: Optional[str] = None) -> dict:
        return await self.send_message(receive_id, receive_id_type, "image", {"image_key": image_key}, tenant_key)

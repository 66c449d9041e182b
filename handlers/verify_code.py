import base64
import binascii
import json
import logging
from typing import Optional

from core.context import ChatContext, Services
from core.images import deliver_image
from core.portal import PortalError, PortalStatusError, set_cookies

logger = logging.getLogger(__name__)

# Length of "data:image/png;base64,"
DATA_URL_PREFIX_LEN = 22


def decode_image(content_type: str, body: bytes) -> Optional[bytes]:
    """Raw image bytes, or the png_base64 field of a JSON wrapper."""
    if "application/json" in content_type.lower():
        data = json.loads(body.decode("utf-8"))
        encoded = data.get("png_base64") if isinstance(data, dict) else None
        if encoded is None or encoded == "":
            return None
        if not isinstance(encoded, str):
            raise ValueError(f"png_base64 is {type(encoded).__name__}, expected str")
        return base64.b64decode(encoded[DATA_URL_PREFIX_LEN:])
    return body or None


async def handler(services: Services, chat: Optional[ChatContext] = None) -> str:
    """Fetch a fresh verification code, start a new session with it, and show it to the user."""
    try:
        r = await services.portal.fetch_verify_code()
    except PortalStatusError as e:
        return f"验证码获取失败（HTTP {e.status_code}）"
    except PortalError as e:
        return str(e)

    cookies = set_cookies(r)
    if cookies:
        try:
            services.store.replace(cookies)
            logger.info("🍪 New OA session cookie stored")
        except OSError as e:
            logger.error(f"Writing cookie file failed: {e}")
            return "验证码已获取，但写入 cookie 失败"

    try:
        image = decode_image(r.headers.get("content-type", ""), r.content)
    except (ValueError, binascii.Error) as e:
        logger.error(f"Could not decode verification code payload: {e} {r.text[:200]}")
        return "验证码接口返回数据解析失败"
    if not image:
        return "验证码接口返回格式未知"

    return await deliver_image(services, image, chat)

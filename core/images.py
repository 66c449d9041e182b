import io
import os
import logging
from typing import Optional, Tuple
import httpx
from PIL import Image, UnidentifiedImageError

from core.context import ChatContext, Services
from core.feishu import FeishuError

logger = logging.getLogger(__name__)

_FORMATS = {
    "PNG": ("verify.png", "image/png"),
    "JPEG": ("verify.jpg", "image/jpeg"),
    "GIF": ("verify.gif", "image/gif"),
    "BMP": ("verify.bmp", "image/bmp"),
}


def sniff_image(image: bytes) -> Tuple[str, str]:
    """Return (filename, mime type) for the upload, defaulting to PNG."""
    try:
        fmt = Image.open(io.BytesIO(image)).format
    except (UnidentifiedImageError, OSError):
        fmt = None
    return _FORMATS.get(fmt, _FORMATS["PNG"])


async def deliver_image(services: Services, image: bytes, chat: Optional[ChatContext]) -> str:
    if chat and chat.receive_id and services.feishu.configured:
        return await _send_to_chat(services, image, chat)
    return _save_to_disk(services.settings.verify_code_image, image)


async def _send_to_chat(services: Services, image: bytes, chat: ChatContext) -> str:
    feishu = services.feishu
    logger.info("📤 Uploading verification code image to Feishu")
    try:
        await feishu.tenant_access_token(chat.tenant_key)
    except (FeishuError, httpx.HTTPError) as e:
        logger.error(f"Feishu token request failed: {e}")
        return "验证码已获取，但飞书 token 获取失败"

    filename, mime_type = sniff_image(image)
    try:
        image_key = await feishu.upload_image(image, filename, mime_type, tenant_key=chat.tenant_key)
    except (FeishuError, httpx.HTTPError) as e:
        logger.error(f"Feishu image upload failed: {e}")
        image_key = None
    if not image_key:
        return "验证码已获取，但上传飞书失败"

    try:
        await feishu.send_image(chat.receive_id, chat.receive_id_type, image_key, tenant_key=chat.tenant_key)
    except (FeishuError, httpx.HTTPError) as e:
        logger.error(f"Feishu image message failed: {e}")
        return f"验证码已获取并已上传，但发送消息失败：{e}"
    return "已获取验证码并已发送至当前会话"


def _save_to_disk(path: str, image: bytes) -> str:
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "wb") as f:
            f.write(image)
    except OSError as e:
        logger.error(f"Saving verification code image failed: {e}")
        return f"验证码保存失败：{e}"
    logger.info(f"💾 Verification code image saved to {path}")
    return f"验证码已获取并保存至 {path}"

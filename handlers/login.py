import logging
from typing import Optional, Tuple

from core.classify import login_body_is_valid
from core.context import ChatContext, Services
from core.portal import PortalError, PortalStatusError
from handlers import verify_code

logger = logging.getLogger(__name__)

LOGIN_VALID = "登录有效"


async def check_login(services: Services) -> Tuple[bool, str]:
    """Ask the portal whether the stored cookie is still a live session."""
    store = services.store
    try:
        store.ensure()
        cookie = store.read() or ""
    except OSError as e:
        logger.error(f"Reading cookie file failed: {e}")
        return False, "读取 cookie 文件失败，请检查 OA_COOKIE_FILE"

    if not cookie:
        return False, "暂无登录信息，需要重新登录 OA"

    logger.info(f"Checking OA login with cookie {cookie[:24]}...")
    try:
        r = await services.portal.check_login(cookie)
    except PortalStatusError as e:
        return False, f"登录已失效（HTTP {e.status_code}）"
    except PortalError as e:
        return False, str(e)

    if login_body_is_valid(r.text):
        return True, LOGIN_VALID
    logger.info(f"Login check body: {r.text[:200]}")
    return False, "登录已失效，请重新登录 OA"


async def handler(services: Services, chat: Optional[ChatContext] = None) -> str:
    valid, message = await check_login(services)
    if valid:
        return "登录成功"
    code_message = await verify_code.handler(services, chat)
    return f"{message}\n{code_message}"

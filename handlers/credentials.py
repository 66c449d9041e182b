import logging
from urllib.parse import urlencode

from core.classify import Outcome, classify_login_response, failure_message
from core.context import Services
from core.portal import PortalError, PortalStatusError, set_cookies

logger = logging.getLogger(__name__)


def build_login_body(account: str, password: str, code: str) -> str:
    return urlencode({
        "account": account,
        "password": password,
        "mxAccount": "null",
        "imgCode": code.strip(),
    })


async def handler(services: Services, code: str) -> str:
    """Log in to OA with the configured account and the code the user typed."""
    settings = services.settings
    if not settings.oa_account or not settings.oa_password:
        return "未配置 OA_ACCOUNT 或 OA_PASSWORD 环境变量"

    try:
        cookie = services.store.read() or ""
    except OSError as e:
        logger.error(f"Reading cookie file failed: {e}")
        return "读取 cookie 失败，请先发送「登录」获取验证码"
    if not cookie:
        return "无有效 cookie，请先发送「登录」获取验证码后再输入验证码"

    body = build_login_body(settings.oa_account, settings.oa_password, code)
    try:
        r = await services.portal.submit_credentials(cookie, body)
    except PortalStatusError as e:
        return f"登录请求失败（HTTP {e.status_code}）"
    except PortalError as e:
        return str(e)

    try:
        data = r.json()
    except ValueError:
        return "登录接口返回非 JSON"
    logger.info(f"validLogin response: {data}")

    outcome = classify_login_response(data)
    if outcome is Outcome.SUCCESS:
        cookies = set_cookies(r)
        if not cookies:
            logger.warning("validLogin reported success without Set-Cookie")
            return "登录失败：未返回会话 cookie"
        try:
            services.store.merge(cookies, cookie)
        except OSError as e:
            logger.error(f"Writing cookie file failed: {e}")
            return "登录成功，但写入 cookie 失败"
        return "登录成功，会话已保存"

    return "登录失败：" + failure_message(data, r.text)

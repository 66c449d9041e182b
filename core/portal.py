import logging
from typing import Dict, List, Optional
import httpx

logger = logging.getLogger(__name__)

ACCEPT_LANGUAGE = "zh-CN,zh;q=0.9,en;q=0.8,en-GB;q=0.7,en-US;q=0.6"
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 18_5 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/18.5 Mobile/15E148 Safari/604.1 Edg/144.0.0.0"
)
ANDROID_UA = (
    "Mozilla/5.0 (Linux; Android 6.0; Nexus 5 Build/MRA58N) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/144.0.0.0 Mobile Safari/537.36 Edg/144.0.0.0"
)
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

LOGIN_CHECK_PATH = "/meip/loginController/getLoginInfo"
VERIFY_CODE_PATH = "/meip/loginController/verifyCode/ImageCode"
VALID_LOGIN_PATH = "/meip/loginController/validLogin"
TOPIC_GET_PATH = "/meip/bmtopic/get"
TOPIC_SAVE_PATH = "/meip/bmtopic/saveAnswer"


class PortalError(Exception):
    """Base class; str() is a message that can go straight back to the chat."""


class PortalTimeout(PortalError):
    pass


class PortalConnectionError(PortalError):
    pass


class PortalStatusError(PortalError):
    def __init__(self, message: str, status_code: int, snippet: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.snippet = snippet


def set_cookies(response: httpx.Response) -> List[str]:
    return response.headers.get_list("set-cookie")


class PortalClient:
    """One call per method; each call opens its own client with a bounded timeout."""

    def __init__(self, base_url: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _browser_headers(self, referer_page: str, user_agent: str = IPHONE_UA) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Accept-Language": ACCEPT_LANGUAGE,
            "Connection": "keep-alive",
            "Referer": f"{self.base_url}/meip/view/{referer_page}",
            "Sec-Fetch-Dest": "empty",
            "Sec-Fetch-Mode": "cors",
            "Sec-Fetch-Site": "same-origin",
            "User-Agent": user_agent,
            "X-Requested-With": "XMLHttpRequest",
        }

    async def _send(self, label: str, method: str, path: str,
                    headers: Dict[str, str], content: Optional[str] = None) -> httpx.Response:
        url = self.base_url + path
        try:
            # The portal certificate is not trusted by public CAs
            async with httpx.AsyncClient(timeout=self.timeout, verify=False,
                                         transport=self.transport) as client:
                r = await client.request(method, url, headers=headers,
                                         content=content.encode("utf-8") if content is not None else None)
        except httpx.TimeoutException:
            logger.warning(f"⏱️ {label} timed out: {url}")
            raise PortalTimeout(f"{label}请求超时")
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ {label} failed: {e}")
            raise PortalConnectionError(f"{label}请求失败：{e}")

        logger.info(f"{method} {path} -> HTTP {r.status_code}")
        if r.status_code != 200:
            snippet = r.text[:200]
            raise PortalStatusError(f"{label}失败（HTTP {r.status_code}）：{snippet}",
                                    r.status_code, snippet)
        return r

    async def check_login(self, cookie: str) -> httpx.Response:
        return await self._send("登录校验", "POST", LOGIN_CHECK_PATH, {"Cookie": cookie})

    async def fetch_verify_code(self) -> httpx.Response:
        headers = self._browser_headers("login/login.html?userId=null", ANDROID_UA)
        headers.update({
            "aaaaa": "null",
            "sec-ch-ua": '"Not(A:Brand";v="8", "Chromium";v="144", "Microsoft Edge";v="144"',
            "sec-ch-ua-mobile": "?1",
            "sec-ch-ua-platform": '"Android"',
        })
        return await self._send("验证码", "POST", VERIFY_CODE_PATH, headers)

    async def submit_credentials(self, cookie: str, body: str) -> httpx.Response:
        headers = self._browser_headers("login/login.html")
        headers.update({
            "Content-Type": FORM_CONTENT_TYPE,
            "Origin": self.base_url,
            "aaaaa": "null",
            "Cookie": cookie,
        })
        return await self._send("登录", "POST", VALID_LOGIN_PATH, headers, body)

    async def get_topic(self, cookie: str, token: Optional[str] = None) -> httpx.Response:
        headers = self._browser_headers("bmtopic/bmtopic.html")
        headers["Cookie"] = cookie
        if token:
            headers["aaaaa"] = token
        return await self._send("答题", "GET", TOPIC_GET_PATH, headers)

    async def save_answer(self, cookie: str, body: str, token: Optional[str] = None) -> httpx.Response:
        headers = self._browser_headers("bmtopic/bmtopic.html")
        headers.update({
            "Content-Type": FORM_CONTENT_TYPE,
            "Origin": self.base_url,
            "Cookie": cookie,
        })
        if token:
            headers["aaaaa"] = token
        return await self._send("提交答案", "POST", TOPIC_SAVE_PATH, headers, body)

import logging
from typing import Optional

from core.context import ChatContext, Services
from handlers import credentials, echo, login, quiz

logger = logging.getLogger(__name__)

LOGIN_KEYWORD = "登录"
QUIZ_KEYWORD = "答题"
VERIFY_CODE_LENGTH = 4


async def route_message(text: str, services: Services, chat: Optional[ChatContext] = None) -> str:
    """Map one chat message to a command and return the reply text."""
    raw = (text or "").strip()
    q = raw.lower()

    try:
        # 1. Login: check the session, fetch a verification code if it is stale
        if LOGIN_KEYWORD in q:
            return await login.handler(services, chat)

        # 2. A 4-character reply is the verification code
        if len(q) == VERIFY_CODE_LENGTH:
            return await credentials.handler(services, q)

        # 3. Daily quiz
        if q == QUIZ_KEYWORD:
            return await quiz.handler(services)

        # 4. Anything else
        return await echo.handler(raw)
    except Exception as e:
        logger.error(f"Command failed for {raw!r}: {e}", exc_info=True)
        return f"处理失败：{e}"

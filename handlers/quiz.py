import json
import logging
from urllib.parse import urlencode

from core.context import Services
from core.portal import PortalError, PortalStatusError
from core.session_store import get_cookie_value

logger = logging.getLogger(__name__)

AUTH_COOKIE = "aaaaa"
ACCEPTED_FLAG = "10"

OPTION_FIELDS = [f"{letter}Option" for letter in "abcdefghij"]


def form_value(value) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_save_answer_body(topic: dict) -> str:
    """Encode a topic the way the bmtopic page posts it to saveAnswer."""
    fields = [
        ("answerTitle", "提交"),
        ("commitText", topic.get("answer")),
        ("topic", topic.get("topic")),
        ("type", topic.get("type")),
        ("topicId", topic.get("id")),
        ("orderKey", topic.get("orderKey")),
        ("analysis", topic.get("analysis")),
        ("answer", topic.get("answer")),
    ]
    fields += [(name, topic.get(name)) for name in OPTION_FIELDS]
    return urlencode([(name, form_value(value)) for name, value in fields])


def is_answerable(topic: dict) -> bool:
    return bool(topic.get("id")) and topic.get("answer") is not None


async def save_answer(services: Services, topic: dict, cookie: str, token) -> str:
    try:
        r = await services.portal.save_answer(cookie, build_save_answer_body(topic), token)
    except PortalStatusError as e:
        return f"提交接口 HTTP {e.status_code}：{e.snippet}"
    except PortalError as e:
        return f"提交答案失败：{e}"

    try:
        data = r.json() if r.content else {}
    except ValueError:
        return "提交成功（返回非 JSON）"
    logger.info(f"saveAnswer response: {data}")

    if isinstance(data, dict) and data.get("isRight") == ACCEPTED_FLAG:
        return "已自动提交"
    if isinstance(data, dict):
        detail = data.get("msg")
        if detail is None:
            detail = data.get("message")
    else:
        detail = None
    if detail is None:
        detail = json.dumps(data, ensure_ascii=False)
    return f"今日已答题，无需重复提交{detail}"


async def handler(services: Services) -> str:
    store = services.store
    if not store.exists():
        return "请先发送「登录」完成 OA 登录后再答题"
    try:
        cookie = store.read() or ""
    except OSError as e:
        logger.error(f"Reading cookie file failed: {e}")
        return "读取 cookie 失败"
    if not cookie:
        return "无有效 cookie，请先发送「登录」完成 OA 登录"

    token = get_cookie_value(cookie, AUTH_COOKIE)
    try:
        r = await services.portal.get_topic(cookie, token)
    except PortalStatusError as e:
        return f"答题接口请求失败（HTTP {e.status_code}）"
    except PortalError as e:
        return str(e)

    try:
        topic = r.json()
    except ValueError:
        return "答题接口返回非 JSON"
    if not isinstance(topic, dict):
        return "答题接口返回格式未知"

    answer = topic.get("answer")
    if answer is None:
        answer = topic.get("status")
    reply = f"今日答案：{answer}"
    logger.info(f"📝 Topic {topic.get('id')} answer={answer}")

    if is_answerable(topic):
        reply += "\n" + await save_answer(services, topic, cookie, token)
    return reply

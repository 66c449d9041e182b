import json
from enum import Enum


class Outcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    UNKNOWN = "unknown"


def login_body_is_valid(body: str) -> bool:
    # getLoginInfo answers with a JSON user record when the session is alive
    # and with the HTML login page otherwise.
    return bool(body) and body.startswith("{")


def classify_login_response(data: dict) -> Outcome:
    """Normalize the validLogin result into SUCCESS / FAILURE / UNKNOWN."""
    if not isinstance(data, dict):
        return Outcome.UNKNOWN
    if data.get("success") is True:
        return Outcome.SUCCESS

    code = data.get("result")
    if code is None:
        code = data.get("status")
    if isinstance(code, bool):
        code = None
    if code == 0 or code == "0":
        return Outcome.SUCCESS

    if data.get("success") is False or code is not None:
        return Outcome.FAILURE
    return Outcome.UNKNOWN


def failure_message(data, raw: str) -> str:
    msg = None
    if isinstance(data, dict):
        for key in ("message", "msg", "error"):
            if data.get(key) is not None:
                msg = data[key]
                break
    if msg is None:
        return raw
    return msg if isinstance(msg, str) else json.dumps(msg, ensure_ascii=False)

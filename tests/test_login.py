import base64
import os
from urllib.parse import parse_qs

import httpx

from conftest import sent_messages
from core.context import ChatContext
from core.portal import LOGIN_CHECK_PATH, VALID_LOGIN_PATH, VERIFY_CODE_PATH
from handlers import credentials, login, verify_code


def write_cookie(settings, value):
    os.makedirs(os.path.dirname(settings.cookie_file), exist_ok=True)
    with open(settings.cookie_file, "w", encoding="utf-8") as f:
        f.write(value)


# --- login check ---

async def test_check_login_first_run_creates_file_without_network(services, settings, portal):
    valid, message = await login.check_login(services)
    assert valid is False
    assert "重新登录" in message
    assert services.store.read() == ""
    assert portal.requests == []


async def test_check_login_valid_json_body(services, settings, portal):
    write_cookie(settings, "JSESSIONID=abc")
    portal.on("POST", LOGIN_CHECK_PATH, text='{"userId":"1"}')
    assert await login.check_login(services) == (True, login.LOGIN_VALID)


async def test_check_login_login_page_is_invalid_and_idempotent(services, settings, portal):
    write_cookie(settings, "JSESSIONID=stale")
    portal.on("POST", LOGIN_CHECK_PATH, text="<html>登 录</html>")
    first = await login.check_login(services)
    second = await login.check_login(services)
    assert first == second == (False, "登录已失效，请重新登录 OA")
    assert services.store.read() == "JSESSIONID=stale"


async def test_check_login_http_error(services, settings, portal):
    write_cookie(settings, "JSESSIONID=abc")
    portal.on("POST", LOGIN_CHECK_PATH, status=302, text="")
    assert await login.check_login(services) == (False, "登录已失效（HTTP 302）")


async def test_check_login_timeout(services, settings, portal):
    write_cookie(settings, "JSESSIONID=abc")

    def timeout(request):
        raise httpx.ConnectTimeout("slow", request=request)

    portal.on("POST", LOGIN_CHECK_PATH, timeout)
    assert await login.check_login(services) == (False, "登录校验请求超时")


# --- verification code ---

async def test_verify_code_cookie_roundtrip_into_login_check(services, portal, png_bytes):
    portal.on("POST", VERIFY_CODE_PATH, content=png_bytes,
              headers=[("content-type", "image/png"), ("set-cookie", "JSESSIONID=fresh; Path=/meip; HttpOnly")])
    portal.on("POST", LOGIN_CHECK_PATH, text="<html></html>")

    await verify_code.handler(services, None)
    await login.check_login(services)

    stored = services.store.read()
    assert stored == "JSESSIONID=fresh; Path=/meip; HttpOnly"
    assert portal.calls(LOGIN_CHECK_PATH)[0].headers["cookie"] == stored


async def test_verify_code_without_chat_saves_to_disk(services, settings, portal, png_bytes):
    portal.on("POST", VERIFY_CODE_PATH, content=png_bytes, headers={"content-type": "image/png"})
    message = await verify_code.handler(services, None)
    assert message == f"验证码已获取并保存至 {settings.verify_code_image}"
    with open(settings.verify_code_image, "rb") as f:
        assert f.read() == png_bytes


async def test_verify_code_json_base64_is_sent_to_chat(services, portal, feishu, png_bytes):
    data_url = "data:image/png;base64," + base64.b64encode(png_bytes).decode()
    portal.on("POST", VERIFY_CODE_PATH, json={"png_base64": data_url})
    chat = ChatContext("ou_1", "open_id")

    message = await verify_code.handler(services, chat)

    assert message == "已获取验证码并已发送至当前会话"
    upload = feishu.calls("/open-apis/im/v1/images")[0]
    assert png_bytes in upload.content
    assert sent_messages(feishu) == [{
        "receive_id": "ou_1", "receive_id_type": "open_id",
        "msg_type": "image", "content": {"image_key": "img_v2_key"},
    }]


async def test_verify_code_bad_json_and_unknown_shape(services, portal):
    portal.on("POST", VERIFY_CODE_PATH, content=b"{not json", headers={"content-type": "application/json"})
    assert await verify_code.handler(services, None) == "验证码接口返回数据解析失败"

    portal.on("POST", VERIFY_CODE_PATH, json={"code": 1})
    assert await verify_code.handler(services, None) == "验证码接口返回格式未知"


async def test_verify_code_http_error(services, portal):
    portal.on("POST", VERIFY_CODE_PATH, status=500, text="boom")
    assert await verify_code.handler(services, None) == "验证码获取失败（HTTP 500）"


async def test_login_handler_concatenates_messages(services, portal, png_bytes):
    portal.on("POST", VERIFY_CODE_PATH, content=png_bytes, headers={"content-type": "image/png"})
    reply = await login.handler(services, None)
    check, code = reply.split("\n")
    assert "重新登录" in check
    assert code.startswith("验证码已获取并保存至")
    assert len(portal.calls(VERIFY_CODE_PATH)) == 1


async def test_login_handler_already_valid(services, settings, portal):
    write_cookie(settings, "JSESSIONID=abc")
    portal.on("POST", LOGIN_CHECK_PATH, text="{}")
    assert await login.handler(services, None) == "登录成功"
    assert portal.calls(VERIFY_CODE_PATH) == []


# --- credential submission ---

async def test_credentials_without_cookie_file_makes_no_request(services, portal):
    reply = await credentials.handler(services, "ab12")
    assert reply == "无有效 cookie，请先发送「登录」获取验证码后再输入验证码"
    assert portal.requests == []


async def test_credentials_require_account(services, settings, portal):
    settings.oa_password = ""
    assert await credentials.handler(services, "ab12") == "未配置 OA_ACCOUNT 或 OA_PASSWORD 环境变量"
    assert portal.requests == []


async def test_credentials_success_merges_cookie(services, settings, portal):
    write_cookie(settings, "JSESSIONID=abc")
    portal.on("POST", VALID_LOGIN_PATH, json={"result": "0"},
              headers=[("set-cookie", "aaaaa=tok; Path=/")])

    assert await credentials.handler(services, " ab12 ") == "登录成功，会话已保存"

    sent = portal.calls(VALID_LOGIN_PATH)[0]
    assert sent.headers["cookie"] == "JSESSIONID=abc"
    assert parse_qs(sent.content.decode()) == {
        "account": ["zhangsan"], "password": ["p@ss word"],
        "mxAccount": ["null"], "imgCode": ["ab12"],
    }
    assert services.store.read() == "aaaaa=tok; Path=/;JSESSIONID=abc"


async def test_credentials_failure_keeps_cookie(services, settings, portal):
    write_cookie(settings, "JSESSIONID=abc")
    portal.on("POST", VALID_LOGIN_PATH, json={"success": False, "message": "验证码错误"},
              headers=[("set-cookie", "aaaaa=tok")])
    assert await credentials.handler(services, "zzzz") == "登录失败：验证码错误"
    assert services.store.read() == "JSESSIONID=abc"


async def test_credentials_non_json_and_http_error(services, settings, portal):
    write_cookie(settings, "JSESSIONID=abc")
    portal.on("POST", VALID_LOGIN_PATH, text="<html/>")
    assert await credentials.handler(services, "zzzz") == "登录接口返回非 JSON"

    portal.on("POST", VALID_LOGIN_PATH, status=403, text="")
    assert await credentials.handler(services, "zzzz") == "登录请求失败（HTTP 403）"


async def test_credentials_connection_error(services, settings, portal):
    write_cookie(settings, "JSESSIONID=abc")

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    portal.on("POST", VALID_LOGIN_PATH, refused)
    assert await credentials.handler(services, "zzzz") == "登录请求失败：refused"


def test_build_login_body_is_form_encoded():
    body = credentials.build_login_body("a b", "p&w", "1234")
    assert body == "account=a+b&password=p%26w&mxAccount=null&imgCode=1234"


async def test_credentials_success_without_set_cookie_is_not_saved(services, settings, portal):
    write_cookie(settings, "JSESSIONID=abc")
    portal.on("POST", VALID_LOGIN_PATH, json={"result": 0})
    assert await credentials.handler(services, "ab12") == "登录失败：未返回会话 cookie"
    assert services.store.read() == "JSESSIONID=abc"


async def test_verify_code_non_string_base64_field(services, portal):
    portal.on("POST", VERIFY_CODE_PATH, json={"png_base64": 12345})
    assert await verify_code.handler(services, None) == "验证码接口返回数据解析失败"

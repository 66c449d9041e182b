# app.py
import json
import logging
import re
from typing import Optional
from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import Response

from core.config import Settings
from core.context import ChatContext, Services, build_services
from core.router import route_message

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

load_dotenv()

MESSAGE_EVENT = "im.message.receive_v1"
MENTION_PATTERN = re.compile(r"@_user_\d+")


def reply_json(status_code: int, data: dict) -> Response:
    # Feishu validates the body as strict JSON, so write it out ourselves
    body = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    return Response(content=body.encode("utf-8"), status_code=status_code,
                    media_type="application/json; charset=utf-8")


def parse_body(raw: bytes) -> dict:
    try:
        body = json.loads(raw or b"{}")
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def extract_challenge(body: dict) -> str:
    challenge = body.get("challenge")
    if challenge in (None, ""):
        challenge = body.get("CHALLENGE")
    is_verification = body.get("type") == "url_verification" or challenge not in (None, "")
    if is_verification and challenge not in (None, ""):
        return str(challenge)
    return ""


def resolve_sender(event: dict, message: dict) -> Optional[str]:
    sender = event.get("sender") or {}
    sender_id = sender.get("sender_id") or sender.get("open_id") or message.get("sender_id")
    # sender_id is usually {open_id, union_id, user_id}
    if isinstance(sender_id, dict):
        sender_id = sender_id.get("open_id")
    return sender_id or None


def message_text(message: dict) -> str:
    try:
        content = json.loads(message.get("content") or "{}")
    except ValueError:
        return ""
    text = content.get("text", "") if isinstance(content, dict) else ""
    if not isinstance(text, str):
        return ""
    # Group messages carry @-mention placeholders such as "@_user_1"
    for mention in message.get("mentions") or []:
        key = mention.get("key") if isinstance(mention, dict) else None
        if key:
            text = text.replace(key, "")
    return MENTION_PATTERN.sub("", text).strip()


def chat_context(header: dict, event: dict) -> Optional[ChatContext]:
    message = event.get("message") or {}
    is_p2p = str(message.get("chat_type") or "").lower() == "p2p"
    receive_id = resolve_sender(event, message) if is_p2p else message.get("chat_id")
    if not receive_id:
        return None
    return ChatContext(
        receive_id=receive_id,
        receive_id_type="open_id" if is_p2p else "chat_id",
        tenant_key=header.get("tenant_key") or None,
    )


async def handle_message_event(services: Services, header: dict, event: dict) -> None:
    try:
        message = event.get("message") or {}
        chat = chat_context(header, event)
        text = message_text(message)
        logger.info(f"💬 Message from {event.get('sender')}: {text!r}")

        reply = await route_message(text, services, chat)

        if not chat:
            logger.error("Process message: missing receive_id (open_id or chat_id)")
            return
        await services.feishu.send_text(chat.receive_id, chat.receive_id_type, reply,
                                        tenant_key=chat.tenant_key)
        logger.info(f"✅ Replied to {chat.receive_id_type}={chat.receive_id}")
    except Exception as e:
        # Still answered 200 so Feishu does not redeliver
        logger.error(f"Process message error: {e}", exc_info=True)


def create_app(services: Optional[Services] = None) -> FastAPI:
    if services is None:
        services = build_services(Settings.from_env())

    app = FastAPI(title="Feishu OA Bridge")
    app.state.services = services

    @app.api_route("/api/feishu", methods=["GET", "HEAD", "PUT", "PATCH", "DELETE", "OPTIONS", "POST"])
    async def feishu_webhook(request: Request, background_tasks: BackgroundTasks) -> Response:
        if request.method != "POST":
            return reply_json(405, {"error": "Method Not Allowed"})

        body = parse_body(await request.body())

        # 1. URL verification must answer within 1s, configured or not
        challenge = extract_challenge(body)
        if challenge:
            return reply_json(200, {"challenge": challenge})

        if not services.feishu.configured:
            logger.error("APP_ID or APP_SECRET not configured")
            return reply_json(500, {"error": "Server configuration error"})

        if "encrypt" in body:
            logger.warning("Encrypted event payloads are not supported; set no Encrypt Key on the app")
            return reply_json(200, {})

        # 2. Event callback
        header = body.get("header")
        event = body.get("event")
        if not isinstance(header, dict) or not isinstance(event, dict):
            return reply_json(200, {})
        if header.get("event_type") == MESSAGE_EVENT:
            background_tasks.add_task(handle_message_event, services, header, event)

        # Feishu expects a JSON 200 within 3s for every delivery
        return reply_json(200, {})

    @app.get("/health")
    async def health():
        return {"ok": True}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.services.settings.port)

from dataclasses import dataclass
from typing import Optional
import httpx

from core.config import Settings
from core.feishu import FeishuClient
from core.portal import PortalClient
from core.session_store import SessionStore


@dataclass
class ChatContext:
    """Where the reply for one webhook delivery goes."""
    receive_id: str
    receive_id_type: str  # "open_id" for p2p, "chat_id" for groups
    tenant_key: Optional[str] = None


@dataclass
class Services:
    settings: Settings
    store: SessionStore
    portal: PortalClient
    feishu: FeishuClient


def build_services(settings: Settings,
                   portal_transport: Optional[httpx.AsyncBaseTransport] = None,
                   feishu_transport: Optional[httpx.AsyncBaseTransport] = None) -> Services:
    return Services(
        settings=settings,
        store=SessionStore(settings.cookie_file),
        portal=PortalClient(settings.oa_base_url, settings.request_timeout, transport=portal_transport),
        feishu=FeishuClient(
            settings.app_id,
            settings.app_secret,
            base_url=settings.feishu_base_url,
            marketplace_app=settings.marketplace_app,
            timeout=settings.request_timeout,
            transport=feishu_transport,
        ),
    )

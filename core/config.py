import os
from pydantic import BaseModel, Field


def _default_path(name: str) -> str:
    return os.path.join(os.getcwd(), "data", name)


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    # Feishu app credentials
    app_id: str = ""
    app_secret: str = ""
    marketplace_app: bool = False
    feishu_base_url: str = "https://open.feishu.cn"

    # OA portal
    oa_account: str = ""
    oa_password: str = ""
    oa_base_url: str = "https://oa.teligen-cloud.com:8280"
    cookie_file: str = Field(default_factory=lambda: _default_path(".oa-cookie"))
    verify_code_image: str = Field(default_factory=lambda: _default_path(".oa-verify-code.png"))
    request_timeout: float = 10.0

    port: int = 3000

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "app_id": os.getenv("APP_ID", ""),
            "app_secret": os.getenv("APP_SECRET", ""),
            "marketplace_app": _flag(os.getenv("FEISHU_MARKETPLACE_APP", "")),
            "oa_account": os.getenv("OA_ACCOUNT", ""),
            "oa_password": os.getenv("OA_PASSWORD", ""),
        }
        # Only override defaults that are actually set
        optional = {
            "feishu_base_url": "FEISHU_BASE_URL",
            "oa_base_url": "OA_BASE_URL",
            "cookie_file": "OA_COOKIE_FILE",
            "verify_code_image": "OA_VERIFY_CODE_IMAGE",
            "request_timeout": "OA_REQUEST_TIMEOUT",
            "port": "PORT",
        }
        for field, env_name in optional.items():
            value = os.getenv(env_name)
            if value:
                values[field] = value
        return cls(**values)

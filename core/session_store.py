import os
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class SessionStore:
    """Reads and writes the raw cookie string for the OA portal."""

    def __init__(self, path: str):
        self.path = path

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def ensure(self) -> None:
        """Create an empty cookie file on first run."""
        if not self.exists():
            logger.info(f"Creating empty cookie file at {self.path}")
            self.write("")

    def read(self) -> Optional[str]:
        """Return the stored cookie (trimmed), or None when the file is missing."""
        if not self.exists():
            return None
        with open(self.path, "r", encoding="utf-8") as f:
            return f.read().strip()

    def write(self, cookie: str) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(cookie)

    def replace(self, set_cookies: list) -> str:
        """Overwrite the session with freshly issued Set-Cookie values."""
        cookie = "; ".join(set_cookies)
        self.write(cookie)
        return cookie

    def merge(self, set_cookies: list, prior: str) -> str:
        """Prepend newly issued Set-Cookie values to the prior session."""
        cookie = "; ".join(set_cookies) + ";" + prior
        self.write(cookie)
        return cookie


def get_cookie_value(cookie: str, name: str) -> Optional[str]:
    """Pull a single named field out of a cookie string."""
    if not cookie or not name:
        return None
    for part in cookie.split(";"):
        part = part.strip()
        eq = part.find("=")
        if eq > 0 and part[:eq].strip() == name:
            return part[eq + 1:].strip()
    return None

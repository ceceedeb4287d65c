"""Client metadata extracted from incoming requests."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request


DEFAULT_IP_ADDRESS = "127.0.0.1"


@dataclass(frozen=True)
class ClientContext:
    ip_address: str
    user_agent: str
    device_name: str
    requested_access_ttl: Optional[int] = None


class DeviceDetector:
    """Best-effort human-readable device name from a User-Agent string."""

    @staticmethod
    def detect(user_agent: Optional[str]) -> str:
        if not user_agent:
            return "Unknown Device"

        ua = user_agent.lower()

        # Mobile and tablet first; their UAs also mention desktop engines
        if "iphone" in ua:
            return "iPhone"
        if "ipad" in ua:
            return "iPad"
        if "android" in ua:
            return "Android Phone" if "mobile" in ua else "Android Tablet"

        if "macintosh" in ua or "mac os x" in ua:
            return "Mac"
        if "windows" in ua:
            return "Windows PC"
        if "linux" in ua:
            return "Linux"

        # Check Edge and Opera before Chrome, and Chrome before Safari
        if "edg/" in ua or "edge" in ua:
            return "Edge Browser"
        if "opr/" in ua or "opera" in ua:
            return "Opera Browser"
        if "firefox" in ua:
            return "Firefox Browser"
        if "chrome" in ua:
            return "Chrome Browser"
        if "safari" in ua:
            return "Safari Browser"

        return "Unknown Device"


def get_client_ip(request: Request) -> str:
    """Client IP, preferring proxy headers over the socket peer."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return DEFAULT_IP_ADDRESS


def get_requested_access_ttl(request: Request) -> Optional[int]:
    """Access-token lifetime requested through ``X-Token-Expiry`` (seconds)."""
    raw = request.headers.get("X-Token-Expiry")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def client_context_from_request(request: Request, device_name: Optional[str] = None) -> ClientContext:
    user_agent = request.headers.get("User-Agent", "")
    name = device_name or request.headers.get("X-Device-Name") or DeviceDetector.detect(user_agent)
    return ClientContext(
        ip_address=get_client_ip(request),
        user_agent=user_agent[:512],
        device_name=name[:100],
        requested_access_ttl=get_requested_access_ttl(request),
    )

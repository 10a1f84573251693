from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core.settings import settings

BASE_HEADERS: tuple[tuple[bytes, bytes], ...] = (
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"DENY"),
    (b"referrer-policy", b"no-referrer"),
    (b"x-xss-protection", b"0"),
    (b"cross-origin-opener-policy", b"same-origin"),
    (b"cross-origin-resource-policy", b"same-origin"),
    (b"permissions-policy", b"camera=(), microphone=(), geolocation=()"),
)

# Loan, borrower and document payloads carry personal financial data.
NO_STORE = (b"cache-control", b"no-store")


def build_default_headers(enable_hsts: bool) -> list[tuple[bytes, bytes]]:
    defaults = list(BASE_HEADERS)
    defaults.append(NO_STORE)
    if enable_hsts:
        defaults.append(
            (b"strict-transport-security", f"max-age={settings.hsts_max_age_seconds}; includeSubDomains".encode())
        )
    if settings.content_security_policy:
        header_name = (
            b"content-security-policy-report-only"
            if settings.content_security_policy_report_only
            else b"content-security-policy"
        )
        defaults.append((header_name, settings.content_security_policy.encode()))
    return defaults


class SecurityHeadersMiddleware:
    """Add security headers to every HTTP response unless the route already set them."""

    def __init__(self, app: ASGIApp, enable_hsts: bool = True) -> None:
        self.app = app
        self.defaults = build_default_headers(enable_hsts)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                present = {key.lower() for key, _ in headers}
                headers.extend((key, value) for key, value in self.defaults if key not in present)
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_headers)

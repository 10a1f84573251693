from starlette.types import ASGIApp, Receive, Scope, Send


def forwarded_client_ip(header_value: str, proxies_count: int) -> str | None:
    """
    Pick the client address out of an ``X-Forwarded-For`` chain.

    The chain reads "client, proxy1, proxy2"; with N trusted proxies appending to it,
    the caller sits N+1 entries from the end. Shorter chains are ignored.
    """
    hops = [hop.strip() for hop in header_value.split(",") if hop.strip()]
    if proxies_count <= 0 or len(hops) <= proxies_count:
        return None
    return hops[-(proxies_count + 1)]


class TrustedProxiesMiddleware:
    """Rewrite the client address and scheme from headers set by a known number of proxies."""

    def __init__(self, app: ASGIApp, proxies_count: int = 1) -> None:
        self.app = app
        self.proxies_count = proxies_count

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and self.proxies_count > 0:
            headers = dict(scope.get("headers", []))
            client_ip = forwarded_client_ip(
                headers.get(b"x-forwarded-for", b"").decode("latin-1"), self.proxies_count
            )
            if client_ip:
                # slowapi, login lockouts and activity rows all read request.client.host.
                port = scope["client"][1] if scope.get("client") else 0
                scope["client"] = (client_ip, port)
            proto = headers.get(b"x-forwarded-proto", b"").decode("latin-1").strip().lower()
            if proto in {"http", "https"}:
                scope["scheme"] = proto

        await self.app(scope, receive, send)

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

POSTGRES_SCHEMES = {"postgres", "postgresql", "postgresql+asyncpg", "postgresql+psycopg"}
_FALSY_SSL = {"0", "false", "no", "off", "disable"}
_STRICT_SSL = {"require", "verify-ca", "verify-full"}


def _sslmode_for(value: str) -> str:
    normalized = value.lower().strip()
    if normalized in _FALSY_SSL:
        return "disable"
    if normalized in _STRICT_SSL:
        return normalized
    return "require"


def normalize_database_url(url: str, driver: str = "psycopg") -> str:
    """
    Rewrite a Postgres URL for the given SQLAlchemy driver.

    Hosted providers hand out ``postgres://`` URLs with ``?ssl=true``; psycopg only
    understands ``sslmode``, so the flag is translated and the scheme pinned to the driver.
    """
    url = (url or "").strip()
    if not url:
        return url

    parts = urlsplit(url)
    if parts.scheme not in POSTGRES_SCHEMES:
        return url
    scheme = f"postgresql+{driver}"

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    ssl_key = next((key for key in query if key.lower() == "ssl"), None)
    if ssl_key is not None:
        ssl_val = query.pop(ssl_key)
        query.setdefault("sslmode", _sslmode_for(ssl_val))

    return urlunsplit((scheme, parts.netloc, parts.path, urlencode(query, doseq=True), parts.fragment))

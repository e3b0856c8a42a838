from __future__ import annotations

import secrets

from fastapi import Header, HTTPException

from garden_graph.settings import settings


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Check X-API-Key against `settings.api_key`; open when no key is configured."""
    expected = settings.api_key
    if not expected:
        return
    if not secrets.compare_digest((x_api_key or "").encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="invalid API key")

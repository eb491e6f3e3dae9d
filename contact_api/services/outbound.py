# contact_api/services/outbound.py
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Tuple

import aiohttp

USER_AGENT = "AllTech-ContactAPI/1.0"


async def post_json(
    url: str,
    payload: Dict[str, Any],
    *,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 10,
) -> Tuple[bool, Optional[int], Optional[str]]:
    """
    POST a JSON document to an external endpoint.
    Returns (success, http_status, error_message); never raises.
    """
    request_headers = {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
    }
    if headers:
        request_headers.update(headers)

    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                url,
                json=payload,
                headers=request_headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                status = response.status
                if 200 <= status < 300:
                    return (True, status, None)
                error_text = await response.text()
                return (False, status, f"HTTP {status}: {error_text[:200]}")
    except asyncio.TimeoutError:
        return (False, None, "Request timeout")
    except aiohttp.ClientError as e:
        return (False, None, f"Client error: {str(e)[:200]}")

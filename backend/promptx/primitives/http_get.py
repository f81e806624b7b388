"""
http_get primitive: fetch a URL with aiohttp.
"""

import asyncio
from typing import Any
from urllib.parse import urlparse

import aiohttp

from ..runtime.capability import Primitive, get_argument
from ..runtime.context import Context
from ...utils.logger import get_logger

logger = get_logger(__name__)


class HttpGet(Primitive):
    name = "http_get"
    description = "Fetch content from a URL via HTTP GET request"
    parameters = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "The URL to fetch"},
        },
        "required": ["url"],
    }

    async def receive(self, message: Any, context: Context) -> str:
        url = get_argument(message, "url")
        if not url:
            return "Error: URL is required"

        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            return "Error: Only http and https URLs are supported"
        if not parsed.netloc:
            return "Error: Invalid URL format"

        config = getattr(context.runtime, "config", None)
        limit = getattr(config, "max_file_chars", 50_000)
        timeout = aiohttp.ClientTimeout(total=getattr(config, "http_timeout", 30))

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, allow_redirects=False) as resp:
                    if 300 <= resp.status < 400:
                        return f"Redirected to: {resp.headers.get('Location')}"
                    if resp.status >= 400:
                        return f"HTTP Error: {resp.status} {resp.reason}"
                    content = await resp.text(errors="replace")
        except asyncio.TimeoutError:
            return "Error: Request timed out"
        except aiohttp.InvalidURL:
            return "Error: Invalid URL format"
        except aiohttp.ClientError as e:
            logger.warning("http_get failed", url=url, error=str(e))
            return f"Error: Could not connect - {e}"

        if len(content) > limit:
            return content[:limit] + f"\n\n... [truncated, response is {len(content)} characters]"
        return content

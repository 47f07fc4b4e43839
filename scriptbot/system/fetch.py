import codecs
import logging
import re
from typing import Optional

import aiohttp

from scriptbot.system.config import FETCH_TIMEOUT

CHARSET_RE = re.compile(r"""(?:charset|encoding)\s{0,10}=\s{0,10}['"]? {0,10}([\w\-]{1,100})""", re.IGNORECASE)
DEFAULT_CHARSET = "utf-8"

logger = logging.getLogger("fetch")


def detect_charset(content_type: Optional[str]) -> str:
    if not content_type:
        return DEFAULT_CHARSET
    match = CHARSET_RE.search(content_type)
    if not match:
        return DEFAULT_CHARSET
    charset = match.group(1).lower()
    try:
        codecs.lookup(charset)
    except LookupError:
        logger.debug("Unknown charset %s, falling back to %s", charset, DEFAULT_CHARSET)
        return DEFAULT_CHARSET
    return charset


def is_text_type(content_type: Optional[str]) -> bool:
    # servers that omit the header get the benefit of the doubt
    return not content_type or content_type.startswith("text")


async def fetch_text(url: str, *, timeout: float = FETCH_TIMEOUT, session: Optional[aiohttp.ClientSession] = None) -> str:
    """Download ``url`` as text, or return an empty string on any failure."""
    logger.debug("fetch %s", url)
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    owns_session = session is None
    if session is None:
        session = aiohttp.ClientSession(timeout=client_timeout)
    try:
        async with session.head(url, allow_redirects=True, timeout=client_timeout) as head:
            head_type = head.headers.get("Content-Type")
        if not is_text_type(head_type):
            logger.debug("%r is not text, content type: %s", url, head_type)
            return ""
        async with session.get(url, timeout=client_timeout) as resp:
            resp.raise_for_status()
            charset = detect_charset(resp.headers.get("Content-Type"))
            logger.debug("Charset of %r: %s", url, charset)
            body = await resp.read()
        return body.decode(charset, errors="replace")
    except Exception as exc:
        logger.debug("fetch error %s: %s", url, exc)
        return ""
    finally:
        if owns_session:
            await session.close()

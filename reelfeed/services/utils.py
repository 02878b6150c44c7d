import asyncio
from datetime import datetime, timezone

import httpx

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def chunked(items, size):
    """Yields consecutive slices of at most ``size`` items."""
    items = list(items)
    for i in range(0, len(items), size):
        yield items[i:i + size]

def format_count(num: int) -> str:
    """Formats engagement counters the way the cards show them (1.2K, 3.4M)."""
    if num >= 1_000_000:
        return f"{num / 1_000_000:.1f}M"
    if num >= 1_000:
        return f"{num / 1_000:.1f}K"
    return str(num)

def format_age(created_at: datetime, now: datetime = None) -> str:
    """Relative age label: now, 5m, 3h, 2d."""
    if created_at is None:
        return ""
    now = now or utcnow()
    seconds = (now - created_at).total_seconds()
    minutes = int(seconds // 60)
    if minutes < 1:
        return "now"
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h"
    return f"{hours // 24}d"

async def check_media_reachable_parallel(urls, transport=None):
    """
    Checks media URLs with parallel HEAD requests against the CDN.
    Returns the set of URLs that answered with a non-error status.
    """
    reachable = set()

    async def check_single(client, url):
        try:
            resp = await client.head(url, follow_redirects=True)
            if resp.status_code < 400:
                return url
        except httpx.HTTPError:
            pass
        return None

    async with httpx.AsyncClient(timeout=5, transport=transport) as client:
        tasks = [check_single(client, url) for url in set(urls)]
        results = await asyncio.gather(*tasks)

    for res in results:
        if res:
            reachable.add(res)

    return reachable

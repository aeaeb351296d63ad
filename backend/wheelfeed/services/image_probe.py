"""
Best-effort image reachability probe.

A HEAD request decides most URLs. When HEAD fails or is ambiguous, the
first KiB is fetched with a Range GET and checked against known image
signatures. Network errors count as "invalid", never as exceptions.
Results are cached per URL so the same image is not probed again for
every row and every run.
"""

import hashlib
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, Iterable, List
from urllib.parse import urlparse

import requests

from .config import PROBE_TIMEOUT, PROBE_TTL, PROBE_WORKERS
from .kv_store import KeyValueStore


PROBE_KEY_PREFIX = 'image_probe_'
BROKEN_IMAGES_KEY = 'feed_broken_images'
MAX_BROKEN_IMAGES = 200
MAX_REDIRECTS = 3
SNIFF_BYTES = 1024

HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36',
    'Accept': 'image/*',
}


def is_well_formed_url(url: str) -> bool:
    """http(s) URL with a host."""
    if not url:
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def looks_like_image(data: bytes) -> bool:
    """Check leading bytes against JPEG/PNG/GIF/WebP/SVG signatures."""
    if not data:
        return False
    if data.startswith(b'\xff\xd8\xff'):
        return True
    if data.startswith(b'\x89PNG\r\n\x1a\n'):
        return True
    if data.startswith(b'GIF87a') or data.startswith(b'GIF89a'):
        return True
    if data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return True
    head = data.lstrip().lower()
    if head.startswith(b'<svg'):
        return True
    if head.startswith(b'<?xml') and b'<svg' in head:
        return True
    return False


def _is_image_content_type(response) -> bool:
    content_type = response.headers.get('Content-Type', '') or ''
    return content_type.lower().startswith('image/')


class ImageProbe:
    """Cached image URL checker."""

    def __init__(self, store: KeyValueStore, ttl: int = PROBE_TTL,
                 timeout: float = PROBE_TIMEOUT, workers: int = PROBE_WORKERS):
        self.store = store
        self.ttl = ttl
        self.timeout = timeout
        self.workers = workers

    @staticmethod
    def cache_key(url: str) -> str:
        return PROBE_KEY_PREFIX + hashlib.md5(url.encode('utf-8')).hexdigest()

    def _http_session(self) -> requests.Session:
        session = requests.Session()
        session.max_redirects = MAX_REDIRECTS
        session.headers.update(HEADERS)
        return session

    def probe(self, url: str) -> bool:
        """Network check without the cache. Safe to call from worker threads."""
        session = self._http_session()
        try:
            try:
                response = session.head(url, timeout=self.timeout, allow_redirects=True)
                if 200 <= response.status_code < 400 and _is_image_content_type(response):
                    return True
            except requests.RequestException:
                pass

            # HEAD failed or was ambiguous: sniff the first bytes
            try:
                response = session.get(
                    url,
                    headers={'Range': f'bytes=0-{SNIFF_BYTES - 1}'},
                    timeout=self.timeout,
                    stream=True,
                    allow_redirects=True,
                )
                try:
                    if response.status_code not in (200, 206):
                        return False
                    if _is_image_content_type(response):
                        return True
                    data = next(response.iter_content(SNIFF_BYTES), b'')
                    return looks_like_image(data)
                finally:
                    response.close()
            except requests.RequestException:
                return False
        finally:
            session.close()

    def _remember(self, url: str, valid: bool) -> None:
        self.store.set(self.cache_key(url), {
            'valid': valid,
            'checked_at': datetime.now().isoformat(),
        }, self.ttl)
        if not valid:
            self._record_broken(url)

    def cached_result(self, url: str):
        """True/False when a probe result is cached, else None."""
        entry = self.store.get(self.cache_key(url))
        if entry is None:
            return None
        return bool(entry.get('valid'))

    def check(self, url: str) -> bool:
        """Is url a reachable image? Uses and fills the probe cache."""
        url = (url or '').strip()
        if not is_well_formed_url(url):
            return False

        cached = self.cached_result(url)
        if cached is not None:
            return cached

        valid = self.probe(url)
        self._remember(url, valid)
        return valid

    def prefetch(self, urls: Iterable[str]) -> int:
        """
        Probe uncached URLs in parallel and cache the results.

        Only the network calls run in worker threads; cache writes happen
        on the calling thread. Returns the number of URLs probed.
        """
        pending: List[str] = []
        seen = set()
        for url in urls:
            url = (url or '').strip()
            if url in seen or not is_well_formed_url(url):
                continue
            seen.add(url)
            if self.cached_result(url) is None:
                pending.append(url)

        if len(pending) < 2 or self.workers <= 1:
            return 0

        with ThreadPoolExecutor(max_workers=min(self.workers, len(pending))) as pool:
            results = list(pool.map(self.probe, pending))

        for url, valid in zip(pending, results):
            self._remember(url, valid)
        return len(pending)

    def _record_broken(self, url: str) -> None:
        broken = self.store.get(BROKEN_IMAGES_KEY) or []
        broken = [b for b in broken if b.get('url') != url]
        broken.append({'url': url, 'detected_at': datetime.now().isoformat()})
        self.store.set(BROKEN_IMAGES_KEY, broken[-MAX_BROKEN_IMAGES:], self.ttl)

    def mark_broken(self, url: str) -> bool:
        """Report a broken image seen by the storefront. Cached as invalid."""
        url = (url or '').strip()
        if not is_well_formed_url(url):
            return False
        self._remember(url, False)
        return True

    def broken_images(self) -> List[Dict]:
        return self.store.get(BROKEN_IMAGES_KEY) or []

# Core logic for fetching a GitHub README and rendering it to safe HTML
import enum
import logging
import posixpath
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import quote, unquote, urlsplit

import bleach
import markdown
import requests
from markdown.extensions.toc import slugify

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_CACHE_TTL = 3600
DEFAULT_TIMEOUT = 10.0
USER_AGENT = "readme-fetcher-v2"
RAW_MEDIA_TYPE = "application/vnd.github.raw"
API_VERSION = "2022-11-28"
HEADING_ID_PREFIX = "user-content-"

def slugify_heading(value: str, separator: str) -> str:
    return HEADING_ID_PREFIX + slugify(value, separator)

MARKDOWN_EXTENSIONS = ["fenced_code", "tables", "toc", "sane_lists", "codehilite"]
MARKDOWN_EXTENSION_CONFIGS = {
    "codehilite": {"css_class": "highlight", "guess_lang": False},
    "toc": {"slugify": slugify_heading},
}

ALLOWED_TAGS = [
    "h1", "h2", "h3", "h4", "h5", "h6",
    "p", "br", "hr", "div", "span",
    "ul", "ol", "li", "dl", "dt", "dd",
    "strong", "b", "em", "i", "del", "s", "sub", "sup", "kbd",
    "a", "img", "blockquote", "pre", "code",
    "table", "thead", "tbody", "tr", "th", "td",
    "details", "summary",
]
ALLOWED_ATTRS = {
    "a": ["href", "title"],
    "img": ["src", "alt", "title", "width", "height"],
    "code": ["class"],
    "pre": ["class"],
    "div": ["class"],
    "span": ["class"],
    "h1": ["id"], "h2": ["id"], "h3": ["id"],
    "h4": ["id"], "h5": ["id"], "h6": ["id"],
    "th": ["align"],
    "td": ["align"],
}
ALLOWED_PROTOCOLS = ["http", "https", "mailto"]
# bleach strips these tags but keeps their text
UNSAFE_BLOCK_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)

class ErrorKind(enum.Enum):
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    UNEXPECTED = "unexpected"

@dataclass(frozen=True)
class RepoRef:
    owner: str
    repo: str

    @property
    def cache_key(self) -> str:
        return f"{self.owner}/{self.repo}"

@dataclass(frozen=True)
class FetchResult:
    value: Optional[str] = None
    error: Optional[ErrorKind] = None
    message: str = ""
    status: Optional[int] = None  # upstream HTTP status, if any

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: str) -> "FetchResult":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind, message: str = "", status: Optional[int] = None) -> "FetchResult":
        return cls(error=error, message=message, status=status)

def parse_github_url(input_url: Any) -> Optional[RepoRef]:
    if not isinstance(input_url, str):
        return None
    try:
        parts = urlsplit(input_url.strip())
        host = parts.hostname
    except ValueError:
        return None
    if parts.scheme.lower() != "https" or not parts.netloc or not host:
        return None
    host = host.lower()
    if host.startswith("www."):
        host = host[len("www."):]
    if host != "github.com":
        return None
    # resolve "." and ".." the way a browser does before splitting
    path = posixpath.normpath("/" + parts.path.lstrip("/"))
    segments = [s for s in path.split("/") if s]
    if len(segments) < 2:
        return None
    owner, repo = segments[0], segments[1]
    if unquote(owner) in (".", "..") or unquote(repo) in (".", ".."):
        return None
    return RepoRef(owner=owner, repo=repo)

class ReadmeCache:
    def __init__(self, ttl: float = DEFAULT_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._store: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._store[key] = (self._clock() + self.ttl, value)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

def classify_status(status: int) -> ErrorKind:
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status in (403, 429):
        return ErrorKind.RATE_LIMITED
    return ErrorKind.UNEXPECTED

class ReadmeFetcher:
    def __init__(
        self,
        cache: ReadmeCache,
        token: Optional[str] = None,
        api_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.cache = cache
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(self._headers(token))

    @staticmethod
    def _headers(token: Optional[str]) -> Dict[str, str]:
        headers = {
            "Accept": RAW_MEDIA_TYPE,
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": API_VERSION,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def readme_url(self, owner: str, repo: str) -> str:
        return f"{self.api_url}/repos/{quote(owner, safe='')}/{quote(repo, safe='')}/readme"

    def fetch(self, owner: str, repo: str) -> FetchResult:
        key = f"{owner}/{repo}"
        cached = self.cache.get(key)
        if cached is not None:
            logger.info("Cache hit %s", key)
            return FetchResult.success(cached)

        logger.info("API fetch %s", key)
        try:
            resp = self.session.get(self.readme_url(owner, repo), timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("GitHub request for %s failed: %s", key, e)
            return FetchResult.failure(ErrorKind.UNEXPECTED, str(e))

        if not resp.ok:
            kind = classify_status(resp.status_code)
            if kind is ErrorKind.UNEXPECTED:
                logger.error("GitHub returned %s for %s: %s", resp.status_code, key, resp.text[:200])
            else:
                logger.warning("GitHub returned %s for %s", resp.status_code, key)
            return FetchResult.failure(kind, resp.reason or "", status=resp.status_code)

        text = resp.content.decode("utf-8", errors="replace")
        self.cache.set(key, text)
        return FetchResult.success(text)

def render_markdown_text(md_text: str) -> str:
    return markdown.markdown(
        md_text,
        extensions=MARKDOWN_EXTENSIONS,
        extension_configs=MARKDOWN_EXTENSION_CONFIGS,
    )

def sanitize_html(raw_html: str) -> str:
    return bleach.clean(
        UNSAFE_BLOCK_RE.sub("", raw_html),
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRS,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
        strip_comments=True,
    )

def render_readme(md_text: str) -> str:
    return sanitize_html(render_markdown_text(md_text))

def fetch_readme_html(input_url: Any, fetcher: ReadmeFetcher) -> FetchResult:
    """Run parse -> fetch -> render for one URL and return the HTML or the error kind."""
    ref = parse_github_url(input_url)
    if ref is None:
        return FetchResult.failure(ErrorKind.INVALID_INPUT, "invalid GitHub URL")

    fetched = fetcher.fetch(ref.owner, ref.repo)
    if not fetched.ok:
        return fetched

    try:
        html_out = render_readme(fetched.value)
    except Exception as e:
        logger.exception("Rendering README for %s failed", ref.cache_key)
        return FetchResult.failure(ErrorKind.UNEXPECTED, str(e))
    return FetchResult.success(html_out)

import logging
import os
from dataclasses import dataclass
from typing import Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from readme_core import (
    DEFAULT_API_URL,
    DEFAULT_CACHE_TTL,
    DEFAULT_TIMEOUT,
    ErrorKind,
    ReadmeCache,
    ReadmeFetcher,
    fetch_readme_html,
)

logger = logging.getLogger(__name__)

INVALID_URL_MESSAGE = "Invalid URL. Format: https://github.com/:owner/:repo"
ERROR_RESPONSES = {
    ErrorKind.INVALID_INPUT: (400, INVALID_URL_MESSAGE),
    ErrorKind.NOT_FOUND: (404, "Repository or Readme not found."),
    ErrorKind.RATE_LIMITED: (429, "GitHub API rate limit exceeded."),
    ErrorKind.UNEXPECTED: (500, "Internal Server Error"),
}

def _env_number(name: str, default, cast=float):
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r, using %s", name, raw, default)
        return default

def _env_log_level(name: str, default: str) -> str:
    raw = os.environ.get(name, "").strip().upper()
    if not raw:
        return default
    if not isinstance(logging.getLevelName(raw), int):
        logger.warning("Ignoring unknown %s=%r, using %s", name, raw, default)
        return default
    return raw

@dataclass(frozen=True)
class Settings:
    port: int = 3000
    host: str = "127.0.0.1"
    github_token: Optional[str] = None
    github_api_url: str = DEFAULT_API_URL
    cache_ttl: float = DEFAULT_CACHE_TTL
    timeout: float = DEFAULT_TIMEOUT
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            port=_env_number("PORT", 3000, int),
            host=os.environ.get("HOST", "127.0.0.1"),
            github_token=os.environ.get("GITHUB_TOKEN", "").strip() or None,
            github_api_url=os.environ.get("GITHUB_API_URL", DEFAULT_API_URL),
            cache_ttl=_env_number("README_CACHE_TTL", DEFAULT_CACHE_TTL),
            timeout=_env_number("GITHUB_TIMEOUT", DEFAULT_TIMEOUT),
            log_level=_env_log_level("LOG_LEVEL", "INFO"),
        )

def create_app(settings: Optional[Settings] = None, fetcher: Optional[ReadmeFetcher] = None) -> Flask:
    settings = settings or Settings.from_env()
    if fetcher is None:
        # one cache for the lifetime of the process
        cache = ReadmeCache(ttl=settings.cache_ttl)
        fetcher = ReadmeFetcher(
            cache,
            token=settings.github_token,
            api_url=settings.github_api_url,
            timeout=settings.timeout,
        )

    app = Flask(__name__)
    app.config["README_FETCHER"] = fetcher

    @app.route('/api/fetch-readme', methods=['POST'])
    def fetch_readme():
        body = request.get_json(silent=True)
        url = body.get('url') if isinstance(body, dict) else None
        result = fetch_readme_html(url, app.config["README_FETCHER"])
        if result.ok:
            return jsonify(html=result.value)
        status, message = ERROR_RESPONSES[result.error]
        if result.error is ErrorKind.UNEXPECTED:
            logger.error("fetch-readme failed for %r: %s (upstream status %s)", url, result.message, result.status)
        return jsonify(error=message), status

    @app.route('/healthz', methods=['GET'])
    def healthz():
        return jsonify(status="ok")

    @app.errorhandler(Exception)
    def handle_error(e):
        if isinstance(e, HTTPException):
            return jsonify(error=e.description), e.code
        logger.exception("Unhandled error: %s", e)
        return jsonify(error=ERROR_RESPONSES[ErrorKind.UNEXPECTED][1]), 500

    return app

def main():
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(settings)
    logger.info("Server running at http://%s:%d", settings.host, settings.port)
    app.run(host=settings.host, port=settings.port)

if __name__ == '__main__':
    main()

"""Utility functions for template scanning."""

import logging
from typing import Optional
from urllib.parse import urljoin, urlparse, urlunparse


# Configure logging
def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Configure logging for the scanner.

    Args:
        verbose: Enable debug logging
        log_file: Also write records to this file
    """
    level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S',
        handlers=handlers,
    )

    # Suppress noisy client logging
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger.setLevel(level)


logger = logging.getLogger("templar")


def validate_url(url: str) -> tuple[bool, str]:
    """Validate URL format.

    Returns:
        (is_valid, error_message)
    """
    try:
        parsed = urlparse(url)
        if not all([parsed.scheme, parsed.netloc]):
            return False, "URL must include scheme (http/https) and host"
        if parsed.scheme not in ("http", "https"):
            return False, "Only http and https schemes are supported"
        return True, ""
    except ValueError as e:
        return False, f"Invalid URL: {e}"


def normalize_target(target: str, default_scheme: str = "https") -> str:
    """Prefix a scheme onto bare hosts; URLs with a scheme pass unchanged."""
    target = target.strip()
    if target.startswith("http://") or target.startswith("https://"):
        return target
    return f"{default_scheme}://{target}"


def build_full_url(base_url: str, path: str) -> str:
    """Resolve ``path`` against ``base_url``; absolute URLs win."""
    if path.startswith("http://") or path.startswith("https://"):
        return path
    try:
        return urljoin(base_url, path)
    except ValueError:
        parsed = urlparse(base_url)
        return f"{parsed.scheme}://{parsed.netloc}/{path.lstrip('/')}"


def normalize_url(url: str) -> str:
    """Strip trailing slashes from the path so ``/x`` and ``/x/`` compare equal."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    return urlunparse(parsed._replace(path=parsed.path.rstrip("/")))


def sanitize_url(url: str) -> str:
    """Sanitize URL for logging (remove credentials)."""
    try:
        parsed = urlparse(url)
        if parsed.password:
            # Remove password from URL
            safe = parsed._replace(
                netloc=f"{parsed.username}:****@{parsed.hostname}"
            )
            if parsed.port:
                safe = safe._replace(
                    netloc=f"{parsed.username}:****@{parsed.hostname}:{parsed.port}"
                )
            return safe.geturl()
        return url
    except ValueError:
        return url

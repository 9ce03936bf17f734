"""Open-redirect protection for post-login and post-logout redirects.

``RedirectValidator.validate`` never raises: anything it cannot prove safe is
replaced by the caller-supplied default, so a rejected URL never reveals which
check it failed.
"""

import re
from typing import Iterable, List, Optional
from urllib.parse import unquote, urlsplit

from ..common.config import SecurityConfig

DANGEROUS_SCHEMES = ("javascript:", "vbscript:", "data:", "file:", "ftp:")

ALLOWED_SCHEMES = ("http", "https")

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def host_of(url: Optional[str]) -> Optional[str]:
    """Lower-cased host of an absolute URL, or None."""
    if not url:
        return None
    try:
        return urlsplit(url.strip()).hostname
    except ValueError:
        return None


class RedirectValidator:
    """
    Validates redirect targets against an allow-list of hosts.

    Hosts match exactly, or through a ``*.domain`` wildcard which accepts
    ``domain`` itself and any subdomain of it.

    Example:
        >>> validator = RedirectValidator(["*.trusted.com"])
        >>> validator.validate("https://app.trusted.com/x")
        'https://app.trusted.com/x'
        >>> validator.validate("https://attacker.com/steal?code=")
        '/'
    """

    def __init__(
        self,
        allowed_hosts: Iterable[str] = (),
        allow_relative: bool = True,
        require_https: bool = False,
        max_url_length: int = 2048,
    ):
        self._allowed_hosts: List[str] = []
        for host in allowed_hosts:
            self.add_allowed_host(host)
        self.allow_relative = allow_relative
        self.require_https = require_https
        self.max_url_length = max_url_length

    @classmethod
    def from_config(
        cls,
        security: SecurityConfig,
        app_url: Optional[str] = None,
        frontend_url: Optional[str] = None,
    ) -> "RedirectValidator":
        """
        Build a validator from the security config.

        The hosts of ``app_url`` and ``frontend_url`` are always allowed.
        """
        hosts = list(security.allowed_redirect_hosts)
        for url in (app_url, frontend_url):
            host = host_of(url)
            if host:
                hosts.append(host)
        return cls(
            hosts,
            require_https=security.require_https_redirects,
            max_url_length=security.max_redirect_url_length,
        )

    @property
    def allowed_hosts(self) -> List[str]:
        return list(self._allowed_hosts)

    def add_allowed_host(self, host: str) -> "RedirectValidator":
        host = host.strip().lower()
        if host and host not in self._allowed_hosts:
            self._allowed_hosts.append(host)
        return self

    def set_allow_relative(self, allow: bool) -> "RedirectValidator":
        self.allow_relative = allow
        return self

    def validate(self, url: Optional[str], default: str = "/") -> str:
        """Return ``url`` when it is a safe redirect target, otherwise ``default``."""
        if url is None or not self.is_safe(url):
            return default
        return url.strip()

    def is_safe(self, url: Optional[str]) -> bool:
        """Whether ``url`` may be used as a redirect target."""
        if not url or not url.strip():
            return False

        candidate = url.strip()
        if len(candidate) > self.max_url_length:
            return False
        if _CONTROL_CHARS.search(candidate):
            return False
        if candidate.lower().startswith(DANGEROUS_SCHEMES):
            return False

        if candidate.startswith("/") and self.allow_relative:
            return self._is_safe_relative(candidate)

        # Browsers read "\" as "/" in the authority, which can move the host
        if "\\" in candidate:
            return False

        try:
            parts = urlsplit(candidate)
            host = parts.hostname
        except ValueError:
            return False

        if not host or not self.is_host_allowed(host):
            return False

        scheme = parts.scheme.lower()
        if scheme and scheme not in ALLOWED_SCHEMES:
            return False
        if self.require_https and scheme != "https":
            return False

        return True

    def is_host_allowed(self, host: str) -> bool:
        host = host.lower().rstrip(".")
        for allowed in self._allowed_hosts:
            if host == allowed:
                return True
            if allowed.startswith("*."):
                base = allowed[2:]
                if host == base or host.endswith("." + base):
                    return True
        return False

    @staticmethod
    def _is_safe_relative(url: str) -> bool:
        if url.startswith("//"):
            return False
        if "\\" in url:
            return False

        decoded = unquote(url)
        if decoded != url and (decoded.startswith("//") or "\\" in decoded):
            return False
        return True

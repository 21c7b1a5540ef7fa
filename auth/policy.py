"""
auth/policy.py -- Declarative route table for the request authentication gate.

Every request is classified exactly once into one of three access levels:

  BYPASS  -- no authentication attempted (preflight, static assets, public
             endpoints such as login, signup and the legal pages).
  SOFT    -- public reads that still bind an identity when a valid
             credential happens to be present (content listing).
  STRICT  -- everything else. A verified credential is required.

Rules are (methods, path regex, access) triples evaluated in order; the first
match wins and anything unmatched is STRICT. Keeping the whole policy in one
ordered table makes it testable row by row.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.config import Settings


class Access(str, Enum):
    BYPASS = "bypass"
    SOFT = "soft"
    STRICT = "strict"


@dataclass(frozen=True)
class Rule:
    """One row of the route table.

    pattern is a regular expression matched against the whole request path.
    methods=None matches any HTTP method.
    """

    pattern: str
    access: Access
    methods: frozenset[str] | None = None
    _regex: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_regex", re.compile(self.pattern))

    def matches(self, method: str, path: str) -> bool:
        if self.methods is not None and method.upper() not in self.methods:
            return False
        return self._regex.fullmatch(path) is not None


def exact(path: str) -> str:
    return re.escape(path)


def prefix(path: str) -> str:
    return re.escape(path) + ".*"


def _methods(*names: str) -> frozenset[str]:
    return frozenset(names)


DEFAULT_RULES: tuple[Rule, ...] = (
    # CORS preflight
    Rule(".*", Access.BYPASS, _methods("OPTIONS")),
    # Static assets
    Rule(prefix("/static/"), Access.BYPASS),
    Rule(prefix("/files/"), Access.BYPASS),
    Rule(prefix("/webjars/"), Access.BYPASS),
    # Session lifecycle. Logout stays public so an expired access token can
    # still clear its cookies.
    Rule(exact("/auth"), Access.BYPASS, _methods("POST", "DELETE")),
    Rule(exact("/auth/refresh"), Access.BYPASS, _methods("POST")),
    Rule(exact("/auth/password-reset") + "(/.*)?", Access.BYPASS),
    # Signup and its duplicate checks
    Rule(exact("/users"), Access.BYPASS, _methods("POST")),
    Rule(exact("/users/check-email"), Access.BYPASS),
    Rule(exact("/users/check-nickname"), Access.BYPASS),
    # Pages that never need a viewer
    Rule(exact("/error"), Access.BYPASS),
    Rule(exact("/terms"), Access.BYPASS),
    Rule(exact("/privacy"), Access.BYPASS),
    Rule(exact("/login"), Access.BYPASS),
    Rule(exact("/api/health"), Access.BYPASS),
    # Public content reads with viewer-relative fields
    Rule(r"/posts(/\d+)?", Access.SOFT, _methods("GET", "HEAD")),
)

# Navigational pages where a rejected request is sent to the login page
# instead of receiving a JSON 401.
REDIRECT_PATHS: frozenset[str] = frozenset({"/", "/index"})


class RoutePolicy:
    """Ordered route table with a STRICT default."""

    def __init__(
        self,
        rules: Iterable[Rule] = DEFAULT_RULES,
        redirect_paths: Iterable[str] = REDIRECT_PATHS,
        default: Access = Access.STRICT,
    ) -> None:
        self.rules: tuple[Rule, ...] = tuple(rules)
        self.redirect_paths = frozenset(redirect_paths)
        self.default = default

    @classmethod
    def from_settings(cls, settings: Settings) -> RoutePolicy:
        """Build the default table plus any PUBLIC_PATHS prefixes from settings."""
        extra = [Rule(prefix(p), Access.BYPASS) for p in settings.public_paths]
        if settings.login_page_path != "/login":
            extra.append(Rule(exact(settings.login_page_path), Access.BYPASS))
        return cls(rules=(*extra, *DEFAULT_RULES))

    def classify(self, method: str, path: str) -> Access:
        for rule in self.rules:
            if rule.matches(method, path):
                return rule.access
        return self.default

    def redirects_on_reject(self, path: str) -> bool:
        """Literal path match only; content negotiation plays no part."""
        return path in self.redirect_paths

"""
Request admission for moodmix.

Every inbound request is shown to an admission oracle before any other
logic runs. The oracle answers with an `AdmissionDecision`; the gate turns a
denial into a 403 and an oracle failure into a 500 (fail closed).

`LocalAdmissionOracle` is the in-process default. It evaluates three rules
in order:

- shield: rejects obvious attack signatures in the path or query string.
- fixed window: per-address rate limit on one path (slowapi / limits).
- bot detection: rejects automated clients by user-agent.

Each rule runs in "LIVE" mode (deny) or "DRY_RUN" mode (log, then allow).
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence
from urllib.parse import unquote

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from limits import parse
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import AdmissionConfig

logger = logging.getLogger(__name__)

LIVE = "LIVE"
DRY_RUN = "DRY_RUN"


@dataclass
class AdmissionDecision:
    allowed: bool
    reason: Optional[str] = None
    rule: Optional[str] = None

    def is_denied(self) -> bool:
        return not self.allowed

    @classmethod
    def allow(cls) -> "AdmissionDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, rule: str, reason: str) -> "AdmissionDecision":
        return cls(allowed=False, reason=reason, rule=rule)


class AdmissionOracle(ABC):
    @abstractmethod
    def protect(self, request: Request) -> AdmissionDecision:
        """Classify one request. May raise; the gate treats that as a failure."""

    def reset(self) -> None:
        """Forget any accumulated per-client state."""


class AdmissionRule(ABC):
    name = "rule"

    def __init__(self, mode: str = LIVE) -> None:
        self.mode = mode

    @abstractmethod
    def check(self, request: Request) -> Optional[str]:
        """Return a denial reason, or None when the request passes."""


class ShieldRule(AdmissionRule):
    name = "shield"

    SIGNATURES = (
        re.compile(r"\.\./|\.\.\\", re.IGNORECASE),
        re.compile(r"<\s*script|javascript:", re.IGNORECASE),
        re.compile(r"\bunion\b.+\bselect\b|\bor\b\s+1\s*=\s*1|;\s*drop\s+table", re.IGNORECASE),
        re.compile(r"/etc/passwd|/proc/self/", re.IGNORECASE),
    )

    def check(self, request: Request) -> Optional[str]:
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        target = unquote(target)
        for signature in self.SIGNATURES:
            if signature.search(target):
                return f"suspicious request pattern: {signature.pattern}"
        return None


class FixedWindowRule(AdmissionRule):
    """One bucket per source address for a single path."""

    name = "fixed_window"

    def __init__(self, rate: str, path: str, mode: str = LIVE) -> None:
        super().__init__(mode)
        self.rate = parse(rate)
        self.path = path
        self._limiter = Limiter(key_func=get_remote_address, strategy="fixed-window")

    def check(self, request: Request) -> Optional[str]:
        if request.url.path != self.path:
            return None
        key = get_remote_address(request)
        if self._limiter.limiter.hit(self.rate, self.path, key):
            return None
        return f"rate limit exceeded ({self.rate}) for {key}"

    def reset(self) -> None:
        self._limiter.reset()


class BotRule(AdmissionRule):
    name = "bot"

    AUTOMATED_AGENTS = (
        r"^curl",
        r"^wget",
        r"^python-requests",
        r"^python-urllib",
        r"^python-httpx",
        r"^aiohttp",
        r"^go-http-client",
        r"^java/",
        r"^okhttp",
        r"^libwww-perl",
        r"^scrapy",
        r"headlesschrome",
        r"phantomjs",
        r"bot\b",
        r"crawler",
        r"spider",
    )

    def __init__(self, allowed: Iterable[str] = (), mode: str = LIVE) -> None:
        super().__init__(mode)
        removed = set(allowed)
        self.patterns: List[re.Pattern] = [
            re.compile(p, re.IGNORECASE) for p in self.AUTOMATED_AGENTS if p not in removed
        ]

    def check(self, request: Request) -> Optional[str]:
        agent = request.headers.get("user-agent", "").strip()
        if not agent:
            return "missing user-agent"
        for pattern in self.patterns:
            if pattern.search(agent):
                return f"automated client: {agent}"
        return None


class LocalAdmissionOracle(AdmissionOracle):
    def __init__(self, rules: Sequence[AdmissionRule]) -> None:
        self.rules = list(rules)

    @classmethod
    def from_config(cls, cfg: AdmissionConfig) -> "LocalAdmissionOracle":
        return cls(
            [
                ShieldRule(mode=cfg.mode),
                FixedWindowRule(cfg.rate_limit, cfg.rate_limit_path, mode=cfg.mode),
                BotRule(cfg.allowed_agents, mode=cfg.mode),
            ]
        )

    def protect(self, request: Request) -> AdmissionDecision:
        for rule in self.rules:
            reason = rule.check(request)
            if reason is None:
                continue
            if rule.mode == DRY_RUN:
                logger.warning(f"Admission rule {rule.name} would deny (dry run): {reason}")
                continue
            return AdmissionDecision.deny(rule.name, reason)
        return AdmissionDecision.allow()

    def reset(self) -> None:
        for rule in self.rules:
            if isinstance(rule, FixedWindowRule):
                rule.reset()


def admission_gate(oracle: AdmissionOracle, request: Request) -> Optional[Response]:
    """
    Outermost pipeline stage. Returns a terminal response, or None to continue.
    """
    try:
        decision = oracle.protect(request)
    except Exception as exc:
        logger.exception(f"Admission oracle error on {request.url.path}: {exc}")
        return JSONResponse({"error": "Internal Server Error"}, status_code=500)

    if decision.is_denied():
        logger.error(
            f"Admission denied {request.method} {request.url.path}: "
            f"rule={decision.rule} reason={decision.reason}"
        )
        return JSONResponse({"error": "Forbidden"}, status_code=403)
    return None


__all__ = [
    "AdmissionDecision",
    "AdmissionOracle",
    "AdmissionRule",
    "BotRule",
    "DRY_RUN",
    "FixedWindowRule",
    "LIVE",
    "LocalAdmissionOracle",
    "ShieldRule",
    "admission_gate",
]

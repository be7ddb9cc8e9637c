"""
api/limiter.py -- Shared slowapi rate limiter and per-route limit rules.

One Limiter instance owns the in-memory counter storage for the whole app
(moving window, keyed by client IP). If each module built its own, each
would get an isolated counter and limits would never trigger.

Routes apply limits through RateLimitRule dependencies rather than
@limiter.limit() because an exceeded limit has to do more than reject:

  1. report the violation to the Auth Monitor (SECURITY audit event)
  2. log it
  3. in production, raise RateLimitedError -> 429 with retryAfter
     in development, let the request through

    @router.post("/login", dependencies=[Depends(auth_limit)])

Rules:
  api_limit           100 / 15 min                     retryAfter 900
  auth_limit          5 / 15 min   (dev: 50)           retryAfter 900
  registration_limit  3 / hour     (dev: 20)           retryAfter 3600
  refresh_limit       10 / 15 min  (dev: 50)           retryAfter 900
"""

from __future__ import annotations

import logging

from fastapi import Request
from limits import parse
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import Settings
from core.errors import RateLimitedError

logger = logging.getLogger("storefront.ratelimit")

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://", strategy="moving-window")


class RateLimitRule:
    def __init__(
        self,
        scope: str,
        production_setting: str,
        development_setting: str,
        retry_after: int,
        title: str,
        message: str,
    ) -> None:
        self.scope = scope
        self.production_setting = production_setting
        self.development_setting = development_setting
        self.retry_after = retry_after
        self.title = title
        self.message = message

    def limit_for(self, settings: Settings) -> str:
        name = self.development_setting if settings.is_development else self.production_setting
        return getattr(settings, name)

    def __call__(self, request: Request) -> None:
        settings: Settings = request.app.state.settings
        client_ip = get_remote_address(request)
        if limiter.limiter.hit(parse(self.limit_for(settings)), self.scope, client_ip):
            return

        logger.warning("SECURITY: %s rate limit exceeded by %s on %s", self.scope, client_ip, request.url.path)
        request.app.state.monitor.track_rate_limit_violation(client_ip, request.url.path)
        if settings.is_development:
            logger.info("Development mode: allowing request over the %s limit", self.scope)
            return
        raise RateLimitedError(self.message, retry_after=self.retry_after, details={"title": self.title})


api_limit = RateLimitRule(
    "api",
    "api_rate_limit",
    "api_rate_limit",
    retry_after=15 * 60,
    title="Too Many Requests",
    message="Too many API requests from this IP, please try again later.",
)

auth_limit = RateLimitRule(
    "auth",
    "auth_rate_limit",
    "auth_rate_limit_dev",
    retry_after=15 * 60,
    title="Too Many Login Attempts",
    message="Too many login attempts from this IP, please try again in 15 minutes.",
)

registration_limit = RateLimitRule(
    "registration",
    "registration_rate_limit",
    "registration_rate_limit_dev",
    retry_after=60 * 60,
    title="Too Many Registration Attempts",
    message="Too many registration attempts, please try again later.",
)

refresh_limit = RateLimitRule(
    "refresh",
    "refresh_rate_limit",
    "refresh_rate_limit_dev",
    retry_after=15 * 60,
    title="Too Many Token Refresh Requests",
    message="Too many token refresh requests, please try again later.",
)

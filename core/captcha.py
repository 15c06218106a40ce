"""
captcha.py -- reCAPTCHA v3 verification against Google's siteverify endpoint.

verify_recaptcha() never raises. Network failures are logged and, outside
development, treated as a failed verification.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from core.config import get_settings

logger = logging.getLogger("fitcoach.captcha")

RECAPTCHA_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"

# Shared session for connection pooling. max_redirects=3 replaces the requests
# default of 30 to guard against SSRF via redirect chains.
_session = requests.Session()
_session.max_redirects = 3


@dataclass
class CaptchaResult:
    success: bool
    score: Optional[float] = None
    action: Optional[str] = None
    error: Optional[str] = None


def verify_recaptcha(token: Optional[str], action: Optional[str] = None, min_score: float = 0.5) -> CaptchaResult:
    """Verify a reCAPTCHA v3 token.

    Args:
        token:     Token produced by the browser widget.
        action:    Expected action name ("login", "register"). Skipped if None.
        min_score: Lowest accepted score (0.0 = bot, 1.0 = human).

    A missing token always fails. A missing RECAPTCHA_SECRET_KEY passes with
    score 1.0 so local setups without keys keep working; callers only invoke
    this when a secret is configured.
    """
    if not token:
        return CaptchaResult(success=False, error="reCAPTCHA token not provided")

    settings = get_settings()
    if not settings.recaptcha_secret_key:
        logger.warning("RECAPTCHA_SECRET_KEY not configured, skipping verification")
        return CaptchaResult(success=True, score=1.0)

    try:
        resp = _session.post(
            RECAPTCHA_VERIFY_URL,
            data={"secret": settings.recaptcha_secret_key, "response": token},
            timeout=10,
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.error("reCAPTCHA verification request failed: %s", e)
        if settings.is_development:
            logger.warning("Allowing request despite reCAPTCHA failure (development)")
            return CaptchaResult(success=True, score=1.0)
        return CaptchaResult(success=False, error="Could not verify reCAPTCHA")

    if not data.get("success"):
        codes = ", ".join(data.get("error-codes") or []) or "unknown error"
        return CaptchaResult(success=False, error=f"reCAPTCHA failed: {codes}")

    returned_action = data.get("action")
    if action and returned_action != action:
        return CaptchaResult(
            success=False,
            action=returned_action,
            error=f"Action mismatch. Expected {action}, got {returned_action}",
        )

    score = float(data.get("score", 0.0))
    if score < min_score:
        return CaptchaResult(
            success=False,
            score=score,
            action=returned_action,
            error=f"reCAPTCHA score too low: {score} (minimum {min_score})",
        )

    return CaptchaResult(success=True, score=score, action=returned_action)

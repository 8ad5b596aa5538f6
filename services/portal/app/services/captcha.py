"""
Cloudflare Turnstile verification.

The client-side widget's claim of success is never trusted; every token is
checked server-side with the secret key.
"""
import time
from functools import lru_cache
from typing import Optional

import httpx

from app.config import settings
from app.obs.errors import ConfigurationError, ExternalServiceError
from app.obs.logging import get_logger
from app.obs.metrics import record_captcha_verification

logger = get_logger(__name__)


class TurnstileVerifier:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        verify_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = settings.TURNSTILE_SECRET_KEY if secret_key is None else secret_key
        self.verify_url = verify_url or settings.TURNSTILE_VERIFY_URL
        self.timeout = timeout or settings.TURNSTILE_TIMEOUT_SECONDS
        self._transport = transport

    async def verify(self, token: Optional[str], remote_ip: Optional[str] = None) -> bool:
        """
        Verify a widget token. Only an explicit ``success: true`` passes.

        Raises ConfigurationError without a secret key and ExternalServiceError
        when the verification endpoint cannot be reached or answers garbage.
        """
        if not token:
            record_captcha_verification("missing")
            return False

        if not self.secret_key:
            logger.error("TURNSTILE_SECRET_KEY is not configured")
            raise ConfigurationError("Server configuration error")

        payload = {"secret": self.secret_key, "response": token}
        if remote_ip and remote_ip != "unknown":
            payload["remoteip"] = remote_ip

        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.verify_url, json=payload)
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            record_captcha_verification("error")
            logger.error(f"Turnstile verification request failed: {e}")
            raise ExternalServiceError(f"CAPTCHA verification failed: {e}")
        except ValueError as e:
            record_captcha_verification("error")
            logger.error(f"Turnstile returned a non-JSON response: {e}")
            raise ExternalServiceError("CAPTCHA verification returned an invalid response")

        latency_ms = (time.time() - start_time) * 1000
        success = isinstance(result, dict) and result.get("success") is True
        record_captcha_verification("success" if success else "failure")

        if not success:
            logger.info(
                "Turnstile token rejected",
                extra={
                    'latency_ms': round(latency_ms, 2),
                    'details': {"error_codes": result.get("error-codes") if isinstance(result, dict) else None},
                },
            )
        return success


@lru_cache()
def get_captcha_verifier() -> TurnstileVerifier:
    return TurnstileVerifier()

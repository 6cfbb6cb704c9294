"""
Core services for srpwire.

Includes the ESI client with compatibility date support, error limit
tracking, retry with exponential backoff, and the service account token
manager.
"""

import re
import json
import time
import random
import logging
from datetime import timedelta
from typing import Optional, Any, Callable

import requests
from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from core.exceptions import ESIError, ESIRateLimitError, TokenError

logger = logging.getLogger('srpwire')

# ESI's MailStopSpamming hint can be very long; never wait more than this
MAX_MAIL_SPAM_DELAY = 15 * 60

NAMES_CHUNK_SIZE = 1000


def retry_with_exponential_backoff(
    func: Callable,
    max_retries: int = 3,
    initial_backoff: float = 1.0,
    max_backoff: float = 60.0,
) -> Any:
    """
    Execute a function with retry logic and exponential backoff.

    Args:
        func: The function to execute (should be a callable that makes the ESI request)
        max_retries: Maximum number of retry attempts
        initial_backoff: Initial backoff time in seconds
        max_backoff: Maximum backoff time in seconds

    Returns:
        The result of the function call

    Raises:
        The last exception if all retries are exhausted
    """
    for attempt in range(max_retries + 1):  # +1 for initial attempt
        try:
            return func()
        except ESIRateLimitError:
            # Rate limits are the caller's to schedule, never retried here
            raise
        except ESIError as e:
            if not e.is_transient or attempt >= max_retries:
                raise

            backoff = min(initial_backoff * (2 ** attempt), max_backoff)
            jitter = random.uniform(0, backoff * 0.1)  # Add 0-10% jitter
            wait_time = backoff + jitter

            reason = e.status_code or 'network error'
            logger.warning(
                f'ESI request failed with {reason}, retrying in {wait_time:.1f}s '
                f'(attempt {attempt + 1}/{max_retries})'
            )
            time.sleep(wait_time)


def parse_mail_spam_delay(error_text: str) -> Optional[float]:
    """
    Extract the wait from a MailStopSpamming error, in seconds.

    ESI answers with text like
    ``MailStopSpamming, details: {"remainingTime": 564217469}`` where
    remainingTime is in milliseconds. The result is capped at 15 minutes.
    """
    if not error_text or 'MailStopSpamming' not in error_text:
        return None

    match = re.search(r'details:\s*(\{[^}]+\})', error_text)
    if not match:
        return None
    try:
        details = json.loads(match.group(1))
        remaining_ms = int(details['remainingTime'])
    except (ValueError, KeyError, TypeError):
        logger.warning(f'Failed to parse MailStopSpamming details: {error_text}')
        return None

    delay = remaining_ms / 1000
    if delay > MAX_MAIL_SPAM_DELAY:
        logger.warning(f'MailStopSpamming delay too long ({delay:.1f}s), capping at {MAX_MAIL_SPAM_DELAY}s')
        delay = MAX_MAIL_SPAM_DELAY
    return delay


class ESIMeta:
    """Metadata from ESI response headers."""

    def __init__(self, response: requests.Response):
        self.response = response

        error_limit_header = response.headers.get('X-Esi-Error-Limit-Remain')
        if error_limit_header is None:
            # Not every endpoint reports the error limit
            self.remaining_error_limit = 100
            self.error_limit_reset = ''
        else:
            self.remaining_error_limit = int(error_limit_header)
            self.error_limit_reset = response.headers.get('X-Esi-Error-Limit-Reset', '')

        self.pages = int(response.headers.get('X-Pages', 1) or 1)


class ESIResponse:
    """ESI response with metadata."""

    def __init__(self, data: Any, meta: ESIMeta):
        self.data = data
        self.meta = meta


class ESIRateLimiter:
    """
    Track the ESI error limit across requests using Django cache.

    Slows down before the error budget runs out, so a burst of failing
    requests does not get the application error-limited (HTTP 420).
    """

    # ESI error limit is per rolling window; X-Esi-Error-Limit-Reset is seconds until it ends
    ERROR_LIMIT_WARNING_THRESHOLD = 20
    ERROR_LIMIT_CACHE_KEY = 'esi_error_limit_remaining'
    MAX_WAIT_SECONDS = 60

    @classmethod
    def _get_cached_limit(cls) -> int:
        remaining = cache.get(cls.ERROR_LIMIT_CACHE_KEY)
        if remaining is None:
            return 100
        return int(remaining)

    @classmethod
    def check_and_wait(cls, remaining: int, reset_seconds: Optional[str] = None) -> None:
        """
        Record the remaining error budget and pause when it runs low.

        Args:
            remaining: The X-Esi-Error-Limit-Remain value from response
            reset_seconds: The X-Esi-Error-Limit-Reset value from response
        """
        try:
            ttl = max(5, int(reset_seconds) + 1) if reset_seconds else 60
        except (TypeError, ValueError):
            ttl = 60
        cache.set(cls.ERROR_LIMIT_CACHE_KEY, remaining, timeout=ttl)

        if remaining >= cls.ERROR_LIMIT_WARNING_THRESHOLD:
            return

        wait_seconds = min(ttl, cls.MAX_WAIT_SECONDS)
        logger.info(f'ESI error limit low ({remaining} remaining), waiting {wait_seconds}s for the window to reset')
        time.sleep(wait_seconds)

    @classmethod
    def get_status(cls) -> dict:
        """Get current error limit status for monitoring."""
        remaining = cls._get_cached_limit()
        return {
            'remaining': remaining,
            'status': 'ok' if remaining >= cls.ERROR_LIMIT_WARNING_THRESHOLD else 'low',
        }


class TokenManager:
    """Manage EVE SSO OAuth2 tokens for the service account."""

    @staticmethod
    def get_service_access_token(character_id: int) -> str:
        """
        Get a valid access token for a service account character.

        Raises TokenError when no refresh token is stored or the refresh fails.
        """
        from core.models import ServiceToken

        cache_key = f'access_token:service:{character_id}'
        cached = cache.get(cache_key)
        if cached:
            return cached

        try:
            service_token = ServiceToken.objects.get(character_id=character_id)
        except ServiceToken.DoesNotExist:
            raise TokenError(f'No service token stored for character {character_id}')

        refresh_token = service_token.get_refresh_token()
        if not refresh_token:
            raise TokenError(f'Service token for character {character_id} cannot be decrypted')

        try:
            token_data = TokenManager._refresh_token(refresh_token)
        except (requests.RequestException, ValueError) as e:
            raise TokenError(f'Token refresh failed for character {character_id}: {e}') from e

        access_token = token_data.get('access_token')
        if not access_token:
            raise TokenError(f'Token refresh for character {character_id} returned no access token')

        expires_in = token_data.get('expires_in', 1200)
        cache.set(cache_key, access_token, timeout=int(expires_in * 0.9))

        # EVE SSO rotates refresh tokens
        new_refresh = token_data.get('refresh_token')
        if new_refresh and new_refresh != refresh_token:
            service_token.set_refresh_token(new_refresh)
        service_token.token_expires = timezone.now() + timedelta(seconds=expires_in)
        service_token.save(update_fields=['refresh_token', 'token_expires', 'updated_at'])

        return access_token

    @staticmethod
    def _refresh_token(refresh_token: str) -> dict:
        """Exchange refresh token for new access token."""
        response = requests.post(
            settings.EVE_SSO_TOKEN_URL,
            data={
                'grant_type': 'refresh_token',
                'refresh_token': refresh_token,
            },
            auth=(settings.EVE_CLIENT_ID, settings.EVE_CLIENT_SECRET),
            timeout=10,
        )
        response.raise_for_status()
        return response.json()


class ESIClient:
    """
    Client for EVE Swagger Interface (ESI) API.

    Supports compatibility date versioning. Transient failures are retried
    with exponential backoff; rate limits surface as ESIRateLimitError.
    """

    BASE_URL = settings.ESI_BASE_URL
    DEFAULT_DATASOURCE = settings.ESI_DATASOURCE
    COMPATIBILITY_DATE = settings.ESI_COMPATIBILITY_DATE

    @classmethod
    def _get_headers(cls, access_token: str = None) -> dict:
        """Build request headers with compatibility date."""
        headers = {
            'Accept': 'application/json',
            'User-Agent': settings.ESI_USER_AGENT,
            'X-Compatibility-Date': cls.COMPATIBILITY_DATE,
        }

        if access_token:
            headers['Authorization'] = f'Bearer {access_token}'

        return headers

    @staticmethod
    def _error_text(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or ''
        if isinstance(body, dict):
            return str(body.get('error', body))
        return str(body)

    @classmethod
    def _raise_for_status(cls, response: requests.Response, endpoint: str) -> None:
        """Map an ESI error response onto the exception taxonomy."""
        status = response.status_code
        if status < 400:
            return

        error_text = cls._error_text(response)

        if status == 420:
            reset = response.headers.get('X-Esi-Error-Limit-Reset')
            retry_after = float(reset) if reset and reset.isdigit() else None
            logger.warning(f'ESI error limit hit (420) on {endpoint}')
            raise ESIRateLimitError(f'Error limited: {error_text}', retry_after=retry_after,
                                    status_code=status, endpoint=endpoint)

        if status == 429:
            header = response.headers.get('Retry-After', '')
            retry_after = float(header) if header.isdigit() else None
            logger.warning(f'ESI rate limit hit (429) on {endpoint}')
            raise ESIRateLimitError(f'Rate limited: {error_text}', retry_after=retry_after,
                                    status_code=status, endpoint=endpoint)

        spam_delay = parse_mail_spam_delay(error_text)
        if spam_delay is not None or 'MailStopSpamming' in error_text:
            logger.warning(f'ESI MailStopSpamming on {endpoint}')
            raise ESIRateLimitError(error_text, retry_after=spam_delay, status_code=status, endpoint=endpoint)

        raise ESIError(f'ESI {status} on {endpoint}: {error_text}', status_code=status, endpoint=endpoint)

    @classmethod
    def request(cls, method: str, endpoint: str, access_token: str = None, params: dict = None,
                data: Any = None, retry: bool = True) -> ESIResponse:
        """
        Make a request to ESI with error limit awareness and retry logic.

        Set retry=False for writes that must not be repeated (sending mail).
        """
        url = f'{cls.BASE_URL}{endpoint}'
        params = {'datasource': cls.DEFAULT_DATASOURCE, **(params or {})}
        headers = cls._get_headers(access_token)

        def _make_request():
            try:
                response = requests.request(
                    method, url, params=params, json=data, headers=headers, timeout=settings.ESI_TIMEOUT,
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                raise ESIError(f'ESI {method} {endpoint} failed: {type(e).__name__}', endpoint=endpoint) from e

            cls._raise_for_status(response, endpoint)

            meta = ESIMeta(response)
            response_data = response.json() if response.content else None

            logger.debug(f'ESI {method} {endpoint}: error limit remaining={meta.remaining_error_limit}')
            ESIRateLimiter.check_and_wait(meta.remaining_error_limit, meta.error_limit_reset)

            return ESIResponse(response_data, meta)

        if not retry:
            return _make_request()

        return retry_with_exponential_backoff(
            _make_request,
            max_retries=settings.ESI_MAX_RETRIES,
            initial_backoff=1.0,
            max_backoff=10.0,
        )

    @classmethod
    def get(cls, endpoint: str, access_token: str, **kwargs) -> ESIResponse:
        """Make an authenticated GET request."""
        if not access_token:
            raise TokenError('No access token available')
        return cls.request('GET', endpoint, access_token=access_token, params=kwargs)

    @classmethod
    def get_public(cls, endpoint: str, **kwargs) -> ESIResponse:
        """Make an unauthenticated GET request."""
        return cls.request('GET', endpoint, params=kwargs)

    @classmethod
    def post_public(cls, endpoint: str, data=None) -> ESIResponse:
        """Make an unauthenticated POST request."""
        return cls.request('POST', endpoint, data=data)

    # Status

    @classmethod
    def get_meta_status(cls) -> dict:
        """
        Get per-route health from ESI's status feed.

        Returns {"routes": [{"method": "GET", "path": "/...", "status": "OK"}, ...]}.
        """
        try:
            response = requests.get(
                settings.ESI_STATUS_URL,
                headers=cls._get_headers(),
                timeout=settings.ESI_TIMEOUT,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ESIError(f'ESI status feed unreachable: {type(e).__name__}', endpoint='/meta/status') from e
        cls._raise_for_status(response, '/meta/status')
        return response.json()

    # Mail endpoints

    @classmethod
    def get_mail_headers(cls, character_id: int, access_token: str, last_mail_id: int = None) -> ESIResponse:
        """Get up to 50 mail headers, older than last_mail_id when given."""
        params = {}
        if last_mail_id is not None:
            params['last_mail_id'] = last_mail_id
        return cls.get(f'/characters/{character_id}/mail/', access_token, **params)

    @classmethod
    def get_mail(cls, character_id: int, mail_id: int, access_token: str) -> ESIResponse:
        """Get a single mail including its body."""
        return cls.get(f'/characters/{character_id}/mail/{mail_id}/', access_token)

    @classmethod
    def send_mail(cls, character_id: int, access_token: str, recipient_id: int, subject: str, body: str) -> int:
        """
        Send an in-game mail to a single character. Returns the new mail id.

        Not retried: a repeated send would deliver the mail twice.
        """
        if not access_token:
            raise TokenError('No access token available')
        payload = {
            'approved_cost': 0,
            'body': body,
            'recipients': [{'recipient_id': recipient_id, 'recipient_type': 'character'}],
            'subject': subject,
        }
        response = cls.request(
            'POST', f'/characters/{character_id}/mail/', access_token=access_token, data=payload, retry=False,
        )
        return response.data

    # Universe endpoints

    @classmethod
    def post_universe_names(cls, ids: list[int]) -> list[dict]:
        """
        Resolve entity IDs to names.

        ESI endpoint: POST /universe/names/
        Returns a list of {"id": int, "name": str, "category": str} objects.
        Sent in chunks of 1000 IDs, the per-request maximum.
        """
        unique_ids = sorted({int(i) for i in ids if i})
        results = []
        for start in range(0, len(unique_ids), NAMES_CHUNK_SIZE):
            chunk = unique_ids[start:start + NAMES_CHUNK_SIZE]
            results.extend(cls.post_public('/universe/names/', data=chunk).data or [])
        return results

    # Killmail endpoints

    @classmethod
    def get_killmail(cls, killmail_id: int, killmail_hash: str) -> ESIResponse:
        """Get a killmail by id and hash (public)."""
        return cls.get_public(f'/killmails/{killmail_id}/{killmail_hash}/')

    # Corporation endpoints

    @classmethod
    def get_corporation_wallet_journal(cls, corporation_id: int, division: int, access_token: str,
                                       page: int = 1) -> ESIResponse:
        """Get one page of a corporation wallet division's journal (newest first)."""
        return cls.get(
            f'/corporations/{corporation_id}/wallets/{division}/journal/', access_token, page=page,
        )

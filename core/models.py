"""
Core models for srpwire.

Holds the persisted refresh token for the mailer service account and the
lease rows used to keep pipeline runs single-flight.
"""

import uuid
import logging
from datetime import timedelta
from typing import Optional

from cryptography.fernet import Fernet
from django.conf import settings
from django.db import IntegrityError, models, transaction
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

logger = logging.getLogger('srpwire')


def get_encryption_key() -> bytes:
    """Derive the token encryption key from SECRET_KEY."""
    import base64
    import hashlib

    key = hashlib.sha256(settings.SECRET_KEY.encode()).digest()
    return base64.urlsafe_b64encode(key)


def encrypt_token(token: str) -> str:
    """Encrypt a refresh token for storage."""
    f = Fernet(get_encryption_key())
    return f.encrypt(token.encode()).decode()


def decrypt_token(encrypted: str) -> str:
    """Decrypt a stored refresh token."""
    f = Fernet(get_encryption_key())
    return f.decrypt(encrypted.encode()).decode()


class ServiceToken(models.Model):
    """
    Refresh token for a service account character.

    The mailer character reads the SRP mailbox, sends notification mail and
    reads the corporation wallet. EVE SSO rotates refresh tokens, so the
    stored value is replaced on every refresh.
    """

    character_id = models.BigIntegerField(unique=True, db_index=True)
    character_name = models.CharField(max_length=255, blank=True)
    refresh_token = models.TextField(help_text=_('Encrypted OAuth2 refresh token'))
    scopes = models.TextField(blank=True)
    token_expires = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _('service token')
        verbose_name_plural = _('service tokens')

    def __str__(self) -> str:
        return self.character_name or str(self.character_id)

    def set_refresh_token(self, token: str) -> None:
        """Encrypt and store refresh token."""
        self.refresh_token = encrypt_token(token)

    def get_refresh_token(self) -> Optional[str]:
        """Decrypt and return refresh token."""
        if not self.refresh_token:
            return None
        try:
            return decrypt_token(self.refresh_token)
        except Exception as e:
            logger.error(f'Failed to decrypt service token for character {self.character_id}: {e}')
            return None


class PipelineLease(models.Model):
    """
    A named, expiring lease.

    Only one holder may own a lease name at a time. An expired lease can be
    taken over, so a crashed run cannot block the pipeline forever.
    """

    name = models.CharField(max_length=100, unique=True)
    holder = models.CharField(max_length=64)
    acquired_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField(db_index=True)

    class Meta:
        verbose_name = _('pipeline lease')
        verbose_name_plural = _('pipeline leases')

    def __str__(self) -> str:
        return f'{self.name} ({self.holder})'

    @classmethod
    def acquire(cls, name: str, ttl_seconds: int) -> Optional[str]:
        """
        Try to take the lease. Returns the holder token, or None if busy.
        """
        holder = uuid.uuid4().hex
        now = timezone.now()
        expires_at = now + timedelta(seconds=ttl_seconds)

        try:
            with transaction.atomic():
                cls.objects.create(name=name, holder=holder, acquired_at=now, expires_at=expires_at)
            return holder
        except IntegrityError:
            pass

        # Row exists: only take it over if it has expired
        taken = cls.objects.filter(name=name, expires_at__lte=now).update(
            holder=holder, acquired_at=now, expires_at=expires_at,
        )
        if taken:
            logger.warning(f'Took over expired lease {name}')
            return holder
        return None

    @classmethod
    def release(cls, name: str, holder: str) -> None:
        cls.objects.filter(name=name, holder=holder).delete()

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from flask import current_app
from flask_mail import Message

from ..extensions import mail
from ..utils.errors import ApiError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

TOKEN_TTL = timedelta(hours=1)
MIN_PASSWORD_LENGTH = 6
GENERIC_SENT_MESSAGE = "If the email exists, a reset link has been sent"


class PasswordResetService:
    """Token-based password reset: request, verify, and apply."""

    def __init__(self, storage_service) -> None:
        self._storage = storage_service

    def request_reset(self, email: str, origin: str) -> Dict[str, Any]:
        """Issue a reset token and e-mail the link.

        The response never reveals whether the address has an account.
        """

        user = self._storage.find_user_by_email(email)
        if not user:
            logger.info('password_reset.unknown_email')
            return {'success': True, 'message': GENERIC_SENT_MESSAGE}

        token = secrets.token_urlsafe(32)
        expires_at = datetime.now(timezone.utc) + TOKEN_TTL
        self._storage.save_reset_token({
            'token': token,
            'email': email,
            'expires_at': expires_at.isoformat(),
            'used': False,
        })

        link = f"{origin.rstrip('/')}/reset-password?token={token}"
        try:
            self._send_email(email, link)
        except Exception:
            logger.warning('password_reset.email_failed', exc_info=True)
            return {'success': True, 'message': GENERIC_SENT_MESSAGE}

        logger.info('password_reset.sent')
        return {'success': True, 'message': "Password reset link has been sent to your email"}

    def verify(self, token: str) -> Dict[str, Any]:
        record = self._check_token(token, verbose=True)
        return {'valid': True, 'email': record['email']}

    def reset(self, token: str, password: Any) -> Dict[str, Any]:
        if not token or not str(token).strip():
            raise ValidationError("Token is required")
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        record = self._check_token(token, verbose=False)

        user = self._storage.find_user_by_email(record['email'])
        if not user:
            logger.error('password_reset.user_missing')
            raise NotFoundError("User not found")

        # The token is consumed first so a password change never leaves it reusable.
        try:
            self._storage.mark_reset_token_used(token)
        except Exception as exc:
            logger.error('password_reset.mark_used_failed', exc_info=True, extra={'user_id': user['id']})
            raise ApiError("Failed to update password", 500) from exc

        try:
            self._storage.update_user_password(user['id'], password)
        except Exception as exc:
            logger.error('password_reset.update_failed', exc_info=True, extra={'user_id': user['id']})
            raise ApiError("Failed to update password", 500) from exc

        logger.info('password_reset.complete', extra={'user_id': user['id']})
        return {'success': True, 'message': "Password updated successfully! You can now log in."}

    def _check_token(self, token: str, verbose: bool) -> Dict[str, Any]:
        if not token or not str(token).strip():
            raise ValidationError("Token is required")

        record = self._storage.fetch_reset_token(token)
        suffix = " Please request a new one." if verbose else ""
        if not record:
            raise ValidationError(f"Invalid or expired reset link.{suffix}")
        if record.get('used'):
            raise ValidationError(f"This reset link has already been used.{suffix}")
        expires_at = _parse_timestamp(record.get('expires_at'))
        if expires_at is None or datetime.now(timezone.utc) > expires_at:
            raise ValidationError(f"This reset link has expired.{suffix}")
        return record

    def _send_email(self, email: str, link: str) -> None:
        if not current_app.config.get('MAIL_SERVER'):
            logger.warning('password_reset.mail_not_configured')
            return

        message = Message(
            subject="Reset your FoodyScan password",
            recipients=[email],
            body=(
                "We received a request to reset your FoodyScan password.\n\n"
                f"Open this link within the next hour to choose a new one:\n{link}\n\n"
                "If you did not ask for this, you can ignore this email."
            ),
        )
        mail.send(message)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

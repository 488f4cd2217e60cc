"""
Unit tests for application settings.
"""

import pytest
from pydantic import ValidationError

from app.core.config import VERIFICATION_CODE_MAX_LENGTH, Settings


class TestVerificationCodeLength:
    def test_default_fits_column(self):
        assert Settings().verification_code_length == VERIFICATION_CODE_MAX_LENGTH

    def test_longer_codes_rejected(self):
        with pytest.raises(ValidationError):
            Settings(verification_code_length=VERIFICATION_CODE_MAX_LENGTH + 1)

    def test_env_value_too_long_rejected(self, monkeypatch):
        monkeypatch.setenv("VERIFICATION_CODE_LENGTH", "8")
        with pytest.raises(ValidationError):
            Settings()

    def test_shorter_codes_allowed(self):
        assert Settings(verification_code_length=4).verification_code_length == 4


def test_csv_helpers():
    config = Settings(
        cors_origins="http://a.dev, http://b.dev",
        mail_providers="SMTP, resend",
        verification_allowed_email_domains="QQ.com,163.com",
    )
    assert config.cors_origins_list == ["http://a.dev", "http://b.dev"]
    assert config.mail_provider_order == ["smtp", "resend"]
    assert config.allowed_email_domains == ["qq.com", "163.com"]

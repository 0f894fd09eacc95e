import pytest
import os
from unittest.mock import patch
from core.config import Settings

class TestSettings:
    """Test configuration settings"""

    @patch.dict(os.environ, {}, clear=True)
    def test_settings_default_values(self):
        """Test that settings have correct default values with no env vars provided"""
        settings = Settings(_env_file=None)
        assert settings.APP_NAME == "Portfolio CMS API"
        assert settings.DEBUG is False
        assert settings.DATABASE_URL == "sqlite+aiosqlite:///./portfolio.db"
        assert settings.STORAGE_BACKEND == "embedded"
        assert settings.RATE_LIMIT_BACKEND == "memory"
        assert settings.CSRF_COOKIE_NAME == "csrf_token"
        assert settings.CSRF_HEADER_NAME == "X-CSRF-Token"
        assert settings.CSRF_TOKEN_MAX_AGE == 3600
        assert settings.CSRF_MAX_FAILED_ATTEMPTS == 10
        assert settings.CSRF_RATE_LIMIT_WINDOW_SECONDS == 300
        assert settings.SESSION_COOKIE_NAME == "admin_session"
        assert settings.SESSION_TTL_HOURS == 24
        assert settings.PASSWORD_KEY == "admin_password"
        assert settings.BCRYPT_ROUNDS == 12
        assert settings.MAX_UPLOAD_BYTES == 10 * 1024 * 1024

    def test_settings_from_env_vars(self):
        """Test that settings load from environment variables"""
        with patch.dict(os.environ, {
            "APP_NAME": "Test App",
            "DEBUG": "true",
            "S3_ACCESS_KEY": "test-key",
            "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
            "CSRF_MAX_FAILED_ATTEMPTS": "5",
        }):
            settings = Settings(_env_file=None)
            assert settings.APP_NAME == "Test App"
            assert settings.DEBUG == True
            assert settings.S3_ACCESS_KEY == "test-key"
            assert settings.CSRF_MAX_FAILED_ATTEMPTS == 5

    def test_boolean_parsing_with_whitespace(self):
        """Test that boolean values with whitespace are parsed correctly"""
        with patch.dict(os.environ, {
            "DEBUG": "true ",
            "FAST_TEST_MODE": " false",
            "S3_USE_SSL": "true\r\n",
        }):
            settings = Settings(_env_file=None)
            assert settings.DEBUG == True
            assert settings.FAST_TEST_MODE == False
            assert settings.S3_USE_SSL == True

    def test_backend_choices_are_normalized(self):
        """Backend names are case and whitespace insensitive"""
        with patch.dict(os.environ, {"STORAGE_BACKEND": " FileSystem ", "RATE_LIMIT_BACKEND": "REDIS"}):
            settings = Settings(_env_file=None)
            assert settings.STORAGE_BACKEND == "filesystem"
            assert settings.RATE_LIMIT_BACKEND == "redis"

    def test_csrf_exempt_paths_property(self):
        """Exempt paths are parsed from their JSON setting"""
        with patch.dict(os.environ, {"CSRF_EXEMPT_PATHS_JSON": '["/api/contact", "/api/webhook"]'}):
            settings = Settings(_env_file=None)
            assert settings.CSRF_EXEMPT_PATHS == ["/api/contact", "/api/webhook"]

    @pytest.mark.parametrize("environment,secure", [
        ("production", True),
        ("Production ", True),
        ("development", False),
        ("staging", False),
    ])
    def test_secure_cookies_only_in_production(self, environment, secure):
        with patch.dict(os.environ, {"ENVIRONMENT": environment}):
            settings = Settings(_env_file=None)
            assert settings.SECURE_COOKIES is secure

    def test_cors_origins_from_settings(self):
        """Test CORS origins list parsing"""
        with patch.dict(os.environ, {"CORS_ORIGINS": "http://a.example, http://b.example,,"}):
            settings = Settings(_env_file=None)
            assert settings.cors_origins_list == ["http://a.example", "http://b.example"]

    def test_extra_config_allowed(self):
        """Test that extra configuration is allowed"""
        settings = Settings(_env_file=None, CUSTOM_SETTING="custom_value")
        assert hasattr(settings, "CUSTOM_SETTING")

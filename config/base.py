# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


class Config:
    # SECRET_KEY must be set via environment variable in production
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable for any shared deployment.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    # Airtable store
    AIRTABLE_API_KEY = os.environ.get("AIRTABLE_API_KEY")
    AIRTABLE_BASE_ID = os.environ.get("AIRTABLE_BASE_ID")
    AIRTABLE_TABLE_NAME = os.environ.get("AIRTABLE_TABLE_NAME")
    AIRTABLE_API_URL = os.environ.get("AIRTABLE_API_URL", "https://api.airtable.com/v0")
    try:
        AIRTABLE_TIMEOUT_SECONDS = float(os.environ.get("AIRTABLE_TIMEOUT_SECONDS", "30"))
    except ValueError:
        AIRTABLE_TIMEOUT_SECONDS = 30.0

    # Dedupe configuration
    DEDUPE_ENABLED = _coerce_bool(os.environ.get("DEDUPE_ENABLED"), default=True)
    DEDUPE_MATCHING_PROFILE_PATH = os.environ.get("DEDUPE_MATCHING_PROFILE_PATH")
    DEDUPE_PERFORMED_BY = os.environ.get("DEDUPE_PERFORMED_BY", "user")

    JSON_SORT_KEYS = False


class DevelopmentConfig(Config):
    DEBUG = True


class TestingConfig(Config):
    TESTING = True
    # Override SECRET_KEY for testing - tests will set their own
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    AIRTABLE_API_KEY = "test-api-key"
    AIRTABLE_BASE_ID = "appTEST"
    AIRTABLE_TABLE_NAME = "Clients"
    DEDUPE_ENABLED = True
    DEDUPE_MATCHING_PROFILE_PATH = None


class ProductionConfig(Config):
    DEBUG = False

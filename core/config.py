"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Authenticator happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() at the
edges (app lifespan, CLI) and pass the Settings object down.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Only the
      process edges call it. HybridAuthenticator, DirectoryProvisioner and the
      directory backends receive the object through their constructors, so the
      core has no ambient config state and tests can build their own Settings.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. ad_base_dn -> AD_BASE_DN). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Used for the DEBUG-conditional SECRET_KEY policy.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright.
  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, directory/ or activity/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authenticator.config")

AuthMode = Literal["local", "ad", "hybrid"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.

    The directory fields keep the AD_* names operators already use in their
    .env files. auth_method selects the login policy; ad_create_users turns
    provisioning on. The two are deliberately independent: a deployment may
    authenticate locally while still mirroring accounts into the directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    secret_key: str = ""
    database_url: str = "sqlite:///./authenticator.db"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    auth_method: AuthMode = "local"
    token_expire_seconds: int = 24 * 3600
    # bcrypt cost factor. 4 is bcrypt's floor, 31 its ceiling.
    bcrypt_salt_rounds: int = Field(default=12, ge=4, le=31)
    min_password_length: int = 6
    self_registration_enabled: bool = True
    login_rate_limit: str = "10/minute"

    # Seed superadmin, created on startup when no account with this email exists.
    # An empty admin_password disables seeding.
    admin_email: str = "admin@authenticator.com"
    admin_password: str = ""
    admin_name: str = "Super Administrator"

    # ------------------------------------------------------------------
    # Directory (LDAP / Active Directory)
    # ------------------------------------------------------------------

    ad_url: str = ""
    ad_base_dn: str = ""
    ad_username: str = ""
    ad_password: str = ""
    ad_domain: str = ""
    ad_users_ou: str = ""
    ad_use_ssl: bool = False
    ad_create_users: bool = False
    ad_backend: Literal["ldap", "powershell", "memory"] = "ldap"
    ad_timeout_seconds: float = 5.0
    ad_provisioning_timeout_seconds: float = 30.0
    powershell_executable: str = "powershell"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origin: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("auth_method", mode="before")
    @classmethod
    def normalize_auth_method(cls, value):
        """Accept 'directory' as an alias for 'ad' and ignore case."""
        if isinstance(value, str):
            value = value.strip().lower()
            if value == "directory":
                return "ad"
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def directory_configured(self) -> bool:
        """True when every connection parameter the directory needs is present."""
        return bool(self.ad_url and self.ad_base_dn and self.ad_username and self.ad_password)

    @property
    def directory_auth_enabled(self) -> bool:
        return self.auth_method in ("ad", "hybrid")

    @property
    def users_ou(self) -> str:
        """Container that newly provisioned directory accounts are created in."""
        return self.ad_users_ou or f"CN=Users,{self.ad_base_dn}"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or build Settings(...) directly
    and hand it to the component under test.
    """
    return Settings()

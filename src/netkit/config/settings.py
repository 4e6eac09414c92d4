"""Configuration settings for netkit.

Settings are loaded from environment variables (prefixed ``NETKIT_``) and
``.env`` files. They cover the HTTP client, the authentication retry
pipeline and credential persistence.
"""

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    :param base_url: Base URL relative endpoints are resolved against
    :type base_url: Optional[str]
    :param auth_failure_codes: Status codes treated as an expired/invalid token
    :type auth_failure_codes: List[int]
    :param refresh_loop_threshold: Refresh attempts that trip the loop detector
    :type refresh_loop_threshold: int
    :param refresh_loop_window_seconds: Loop detector window length
    :type refresh_loop_window_seconds: float
    :param refresh_slot_key: Key of the shared in-flight refresh slot
    :type refresh_slot_key: str
    :param credential_service: Service key the token is stored under
    :type credential_service: str
    :param credential_persist: Persist the token to an encrypted file
    :type credential_persist: bool
    :param credential_store_path: Location of the encrypted token file
    :type credential_store_path: Optional[Path]
    :param encryption_key: Fernet key or passphrase for the token file
    :type encryption_key: Optional[str]
    :param log_requests: Log every request/response pair
    :type log_requests: bool
    :param log_level: Logging level for the application
    :type log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    """

    model_config = SettingsConfigDict(
        env_prefix="NETKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    base_url: Optional[str] = Field(None, description="API base URL")

    # Authentication retry pipeline
    auth_failure_codes: List[int] = Field(
        default_factory=lambda: [401, 403],
        description="HTTP status codes that indicate an expired or invalid token",
    )
    refresh_loop_threshold: int = Field(
        5, ge=1, description="Refresh attempts within the window that abort"
    )
    refresh_loop_window_seconds: float = Field(
        1.0, gt=0, description="Loop detection window in seconds"
    )
    refresh_slot_key: str = Field("reauth", description="Shared refresh slot key")

    # Credential storage
    credential_service: str = Field(
        "netkit.token", description="Service key for the stored token"
    )
    credential_persist: bool = Field(
        False, description="Persist the token in an encrypted file"
    )
    credential_store_path: Optional[Path] = Field(
        None, description="Path of the encrypted token file"
    )
    encryption_key: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("NETKIT_ENCRYPTION_KEY", "encryption_key"),
        description="Fernet key (or passphrase) used to encrypt stored tokens",
    )

    # HTTP client
    connect_timeout: float = Field(5.0, description="Connect timeout in seconds")
    read_timeout: float = Field(30.0, description="Read timeout in seconds")
    write_timeout: float = Field(10.0, description="Write timeout in seconds")
    pool_timeout: float = Field(5.0, description="Pool timeout in seconds")
    max_connections: int = Field(20, description="Maximum open connections")
    max_keepalive_connections: int = Field(
        10, description="Maximum idle keep-alive connections"
    )
    max_redirects: int = Field(20, ge=0, description="Redirects followed per request")

    # Logging
    log_requests: bool = Field(True, description="Log request/response traffic")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO", description="Logging level"
    )

    @field_validator("auth_failure_codes")
    @classmethod
    def validate_auth_failure_codes(cls, v: List[int]) -> List[int]:
        """Reject status codes outside the HTTP range.

        :param v: Configured status codes
        :type v: List[int]
        :return: The validated status codes
        :rtype: List[int]
        :raises ValueError: If a code is not a valid HTTP status
        """
        for code in v:
            if not 100 <= code <= 599:
                raise ValueError(f"Invalid HTTP status code: {code}")
        return v

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: Optional[str]) -> Optional[str]:
        """Require an absolute http(s) base URL when one is configured.

        :param v: The configured base URL
        :type v: Optional[str]
        :return: The base URL unchanged
        :rtype: Optional[str]
        :raises ValueError: If the URL is not absolute http(s)
        """
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an absolute http(s) URL: {v}")
        return v

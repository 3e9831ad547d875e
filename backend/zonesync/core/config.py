"""
Configuration management for the Zone Sync service
"""

import ipaddress
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application settings
    APP_NAME: str = "Zone Sync API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = Field(default=False, description="Debug mode")

    # CORS
    ALLOWED_ORIGINS: List[str] = Field(default=["*"])

    @field_validator('ALLOWED_ORIGINS', mode='before')
    @classmethod
    def parse_allowed_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    # Optional shared token expected from the CRUD layer
    SYNC_API_TOKEN: Optional[str] = None

    # Databases: the dashboard's record store and our own sync state
    DATABASE_URL: str = "sqlite:///./dashboard.db"
    SYNC_STATE_DATABASE_URL: str = "sqlite:///./zonesync_state.db"
    DATABASE_ECHO: bool = False

    # Authoritative server access
    DNS_SERVER_HOST: str = "127.0.0.1"
    DNS_SERVER_PORT: int = 22
    DNS_SERVER_USER: str = "bind"
    SSH_PRIVATE_KEY: Optional[str] = Field(default=None, description="PEM key content or path to a key file")
    SSH_KEY_PASSPHRASE: Optional[str] = None
    SSH_STRICT_HOST_KEY_CHECKING: bool = False
    SSH_KNOWN_HOSTS: Optional[str] = None
    REMOTE_USE_SUDO: bool = True
    REMOTE_TEMP_DIR: str = "/tmp"

    # BIND9 layout on the remote host
    BIND_ZONES_DIR: str = "/etc/bind"
    BIND_SERVICE_NAME: str = "bind9"
    RNDC_PATH: str = "/usr/sbin/rndc"
    NAMED_CHECKZONE_PATH: str = "/usr/sbin/named-checkzone"

    # Publish pipeline
    SYNC_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    SYNC_BACKOFF_BASE: float = Field(default=1.0, ge=0)
    SYNC_BACKOFF_MAX: float = Field(default=30.0, ge=0)
    REMOTE_CALL_TIMEOUT: float = Field(default=30.0, gt=0)
    SYNC_REQUEST_TIMEOUT: float = Field(default=120.0, gt=0)
    PUBLISH_INACTIVE_DOMAINS: bool = False
    JOB_HISTORY_LIMIT: int = 1000

    # Zone file content
    MAX_TTL: int = 2147483647
    ZONE_DEFAULT_TTL: int = 604800
    SOA_REFRESH: int = 604800
    SOA_RETRY: int = 86400
    SOA_EXPIRE: int = 2419200
    SOA_NEGATIVE_TTL: int = 604800
    PRIMARY_NS_TEMPLATE: str = "ns1.{domain}"
    ADMIN_MAILBOX_TEMPLATE: str = "admin.{domain}"
    NS_GLUE_ADDRESS: Optional[str] = None

    # Post-reload verification
    DNS_VERIFY_ENABLED: bool = True
    DNS_VERIFY_ADDRESS: Optional[str] = None
    DNS_VERIFY_PORT: int = 53
    DNS_VERIFY_ATTEMPTS: int = 3
    DNS_VERIFY_DELAY: float = 1.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE: Optional[str] = None

    @property
    def glue_address(self) -> Optional[str]:
        """Address for the in-zone nameserver glue record, if one is known"""
        if self.NS_GLUE_ADDRESS:
            return self.NS_GLUE_ADDRESS
        try:
            ipaddress.IPv4Address(self.DNS_SERVER_HOST)
            return self.DNS_SERVER_HOST
        except ValueError:
            return None

    @property
    def verify_address(self) -> str:
        """Where SOA liveness queries are sent"""
        return self.DNS_VERIFY_ADDRESS or self.DNS_SERVER_HOST

    class Config:
        env_file = [".env", "../.env"]
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()

#!/usr/bin/env python3
"""
Test script to verify configuration loading and derived settings
"""

from zonesync.core.config import Settings
from zonesync.core.database import to_async_url
from zonesync.services.zone_compiler import SOAParameters


def test_defaults_match_published_zone_constants():
    """SOA timers default to the values the dashboard always published"""
    settings = Settings(_env_file=None)
    assert settings.SOA_REFRESH == 604800
    assert settings.SOA_RETRY == 86400
    assert settings.SOA_EXPIRE == 2419200
    assert settings.SOA_NEGATIVE_TTL == 604800
    assert settings.MAX_TTL == 2 ** 31 - 1
    assert settings.BIND_ZONES_DIR == "/etc/bind"
    assert settings.REMOTE_USE_SUDO is True


def test_glue_and_verify_addresses_follow_server_host():
    settings = Settings(_env_file=None, DNS_SERVER_HOST="172.16.10.123")
    assert settings.glue_address == "172.16.10.123"
    assert settings.verify_address == "172.16.10.123"

    named_host = Settings(_env_file=None, DNS_SERVER_HOST="ns1.example.net")
    assert named_host.glue_address is None

    explicit = Settings(
        _env_file=None,
        DNS_SERVER_HOST="ns1.example.net",
        NS_GLUE_ADDRESS="198.51.100.53",
        DNS_VERIFY_ADDRESS="198.51.100.54",
    )
    assert explicit.glue_address == "198.51.100.53"
    assert explicit.verify_address == "198.51.100.54"


def test_allowed_origins_accepts_comma_separated_string():
    settings = Settings(_env_file=None, ALLOWED_ORIGINS="https://a.example, https://b.example")
    assert settings.ALLOWED_ORIGINS == ["https://a.example", "https://b.example"]


def test_soa_parameters_from_settings():
    settings = Settings(
        _env_file=None,
        DNS_SERVER_HOST="192.0.2.53",
        ZONE_DEFAULT_TTL=3600,
        PRIMARY_NS_TEMPLATE="ns.{domain}",
    )
    soa = SOAParameters.from_settings(settings)
    assert soa.default_ttl == 3600
    assert soa.primary_ns_template == "ns.{domain}"
    assert soa.glue_address == "192.0.2.53"


def test_database_urls_are_mapped_to_async_drivers():
    assert to_async_url("sqlite:///./dashboard.db") == "sqlite+aiosqlite:///./dashboard.db"
    assert to_async_url("postgresql://u:p@db/app") == "postgresql+asyncpg://u:p@db/app"
    assert to_async_url("postgres://u:p@db/app") == "postgresql+asyncpg://u:p@db/app"
    assert to_async_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"

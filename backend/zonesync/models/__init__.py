# Models package

from .dns import Domain, DNSRecord
from .sync import ZoneSerial, PublishJobRecord

__all__ = [
    # Dashboard tables
    "Domain",
    "DNSRecord",
    # Sync state tables
    "ZoneSerial",
    "PublishJobRecord",
]

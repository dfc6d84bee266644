"""
Customer Timezone Resolution

The one place where a customer's timezone name is turned into a ZoneInfo,
including the fallback to the configured default. Injected into the
evaluator, ledger and splitter.
"""

from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import DEFAULT_TIMEZONE
from .exceptions import TimezoneLookupError


class CustomerTimezoneSource(Protocol):
    def get_customer_timezone(self, customer_id: str) -> str | None:
        """Raw timezone name of a customer, None when unset.

        Raises CustomerNotFoundError for unknown customers.
        """
        ...


class TimezoneResolver:
    """Resolve customers to ZoneInfo objects with an explicit default"""

    def __init__(self, source: CustomerTimezoneSource, default_timezone: str = DEFAULT_TIMEZONE):
        self.source = source
        self.default_timezone = default_timezone
        self._zones: dict[str, ZoneInfo] = {}

    def zone(self, name: str, customer_id: str | None = None) -> ZoneInfo:
        cached = self._zones.get(name)
        if cached is not None:
            return cached
        try:
            tz = ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            raise TimezoneLookupError(name, customer_id)
        self._zones[name] = tz
        return tz

    def timezone_name_for(self, customer_id: str) -> str:
        """Customer's IANA name, or the default when the customer has none."""
        name = self.source.get_customer_timezone(customer_id)
        return (name or "").strip() or self.default_timezone

    def zone_for_customer(self, customer_id: str) -> ZoneInfo:
        """
        ZoneInfo for a customer.

        Raises:
            CustomerNotFoundError: unknown customer
            TimezoneLookupError: customer timezone is not a valid IANA name
        """
        return self.zone(self.timezone_name_for(customer_id), customer_id)

"""Shared helpers with no dependency on the auth domain."""

from utils.timezone import from_timestamp, now_utc, seconds_until, to_timestamp, to_utc

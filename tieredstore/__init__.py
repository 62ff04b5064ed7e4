"""Tiered block storage for message streams: block format, file and object-store tiers, configuration, subject helpers and the nts-ctl client."""

__version__ = "0.1.0"
"""Host firewall toolkit: rules and nftables compilation, rule file watching, packet detection and SQLite event storage."""

__version__ = "0.1.0"
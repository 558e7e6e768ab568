"""cache/ -- Keyed TTL store for one-time codes and attempt counters."""

"""kbeads server adapters."""

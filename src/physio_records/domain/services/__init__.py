"""Domain services: concurrency tags, guarded mutations, aggregation and paging."""

"""Core building blocks: HTTP transport, caching, configuration and generation."""

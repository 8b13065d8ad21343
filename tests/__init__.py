"""Test suite for charforge.

Test Structure:
- unit/: Unit tests for individual components
  - api/http/: single-attempt HTTP transport
  - generation/: error taxonomy, retry, models, endpoint and client
  - caching/: blob cache backends
  - config/: configuration loading
  - cli/: command-line interface
- conftest.py: Shared fixtures and test configuration
"""

"""HR call reminder engine test suite

Test organization:
- unit/: Unit tests for individual modules
  - notifications/: store, policy, scheduler, worker, messenger, poller, push, config
- integration/: End-to-end reminder flow across both execution contexts

Running tests:
    # All tests
    pytest

    # Specific module
    pytest tests/unit/notifications/test_worker.py
"""

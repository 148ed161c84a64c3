"""
Tests package for crosspost

This package contains all unit and integration tests.

Test organization:
- test_validation.py: Per-platform content rules
- test_capabilities.py: Mastodon limit lookups and the TTL cache
- test_publisher.py: Dispatcher fan-out and aggregation
- test_thread_publisher.py: Reply chaining on top of a platform client
- test_crypto.py: Sealed payload envelope
- test_job_store.py: File-backed job store
- test_scheduler.py: Scheduling, polling and job lifecycle
- test_request.py: Building requests from raw payloads
- test_config.py: Settings and encryption key resolution
- test_status_monitor.py: Monitoring and health tracking
- test_cli.py: Command-line subcommands and status file ownership
- conftest.py: Shared fixtures and test utilities
"""

__version__ = "1.0.0"

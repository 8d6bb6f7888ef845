"""
Integration tests for the concertdb library.

These tests require actual PostgreSQL and MongoDB instances, provisioned via
testcontainers.

Tests are skipped automatically if required infrastructure is not available.

Run integration tests:
    pytest tests/integration/ -v

Run only PostgreSQL tests:
    pytest tests/integration/ -v -m postgres

Run only MongoDB tests:
    pytest tests/integration/ -v -m mongodb

Skip integration tests:
    pytest tests/ -v -m "not integration"
"""

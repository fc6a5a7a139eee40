"""
Test Suite for the Decision Engine

Unit tests for the configuration layer, data model and every service,
plus end-to-end decision cycle tests.

Test Categories:
- test_core: Configuration loading, data model and serialization
- test_services: Risk metrics, validation, sizing and synthesis
- test_engine: Complete decision cycles
"""

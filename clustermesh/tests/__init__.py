"""
Tests Module: Unit and Integration Tests

Test Coverage:
    - Core types, errors and configuration
    - Distance kernels and the coreset compressor
    - Buckets, forgetting, both storage variants
    - Diff/mix synchronization and packed state
    - Metrics and structured logging
"""

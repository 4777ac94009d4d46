"""
Unit tests for LP_MM_TRADING

Test modules:
- test_utils.py: Input validation tests
- test_config.py: Configuration validation tests
- test_normalizer.py: Sff and Z-Score calculation tests
- test_performance_optimizer.py: Vectorized Z-Score tests

Run tests:
    pytest tests/
    pytest tests/test_utils.py -v
    pytest tests/ --cov=src
"""

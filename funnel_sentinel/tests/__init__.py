'''
Funnel Sentinel Test Suite

Test Modules:
-------------
- test_aggregation.py: record screening and stage aggregation
  - Bookkeeping stage exclusion (>= 1000 and placeholder indices)
  - Sub-stage records aggregate separately
  - Malformed records skipped and counted

- test_conversion_impact.py: conversion, impact and pacing arithmetic
  - Zero denominators yield 0, never NaN
  - Impact monotonic in lead delta

- test_detectors.py: detector registry and worked scenarios
  - Conversion drop, AOP pacing, concentration, stuck spike (parity)
  - Boundary inclusivity of severity bands

- test_prioritization.py: ranking, roll-ups and priority buckets
- test_lifecycle.py: deterministic phase assignment and recovery roll-ups
- test_frames.py: pandas extract adapters
- test_api.py: FastAPI contract tests for /alerts and /issues

Running Tests:
--------------
    pip install -e ".[test]"
    pytest -v
'''

__all__ = []

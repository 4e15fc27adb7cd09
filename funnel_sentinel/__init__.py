"""
Funnel Sentinel: anomaly detection and issue lifecycle tracking for loan funnels.

Subpackages:
- core: settings, dependencies, exceptions
- models: enums and Pydantic schemas
- services: aggregation, detection, prioritization, lifecycle, pipeline
- api: FastAPI routers
"""

__version__ = "1.0.0"

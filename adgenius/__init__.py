"""
AdGenius AI licensing backend.

License catalog, entitlement resolution, credit metering and JVZoo
purchase processing behind a small FastAPI surface.
"""

__version__ = "1.0.0"

"""
Adapters package for the Gateway Service.

Contains HTTP client wrappers for the upstream quiz/blog services. These
adapters encapsulate:

- Base URLs and request shapes
- Timeouts
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .upstream_client import UpstreamClient

__all__ = ["UpstreamClient"]

"""
API response models for the Secrets app's JSON endpoints.

The web UI renders HTML; the only JSON surface is the health check used by
load balancers and monitoring.
"""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str]

"""Health check resources for Kubernetes liveness and readiness checks.

Usage
-----
Import health resources for route registration::

    from hubsync.api.health.resources import HealthResource, ReadyResource
"""

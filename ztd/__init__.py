"""ztd: zero-downtime rolling updates for Docker Compose services behind Traefik.

A rolling update scales the service to twice its replica count, waits for
the new replicas to report healthy, repoints the Traefik dynamic
configuration at them, drains and removes the old replicas, and finally
regenerates the whole routing document from container labels.
"""

__version__ = "0.3.0"

"""
SentinelFlow decision service.

Async layer around sentinel_boundary: configuration, advisory annotation,
journal persistence, incident bundles, metrics and the HTTP surface.
"""

"""Request instrumentation: correlation ids, structlog context, and an in-process
metrics registry rendered in the Prometheus text format on ``/metrics``.
"""

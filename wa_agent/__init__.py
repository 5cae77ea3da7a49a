"""
wa-agent runtime core.

Resilience (retry, circuit breaking) and resource pooling (connections,
two-tier cache, warm agents, durable queue) underneath the WhatsApp webhook
and agent glue code.
"""

__version__ = "1.0.0"

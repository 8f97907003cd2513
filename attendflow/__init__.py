"""Background notification processing for the attendance workflow.

Durable at-least-once task queue, worker pools, cron scheduler and the
notification/email handlers that run on them.
"""

__version__ = "0.1.0"

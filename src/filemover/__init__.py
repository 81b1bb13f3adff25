"""
filemover - scheduled file generation and multi-target transfer.

Packages:
- filemover.core: errors, logging, settings, models, schema, secrets
- filemover.scheduling: timezone-correct cron, schedule store, trigger poller
- filemover.coordination: distributed locks and status cache (memory / Redis)
- filemover.messaging: work channels and wire messages (memory / Redis)
- filemover.execution: retry policy, dead letters, timeouts, stage workers
- filemover.pipeline: generation and transfer stages, local capabilities
- filemover.jobs: job history, fan-in aggregator, status service
- filemover.api / filemover.cli: status API and command line
"""

__version__ = "0.1.0"

"""
Recurring job scheduler.

- rules: pure recurrence rule engine
- materializer: persists rule dates as occurrences, once each
- lifecycle: pending -> completed / skipped transitions and auto-invoicing
- driver: refresh entry point for the host application
- jobs: periodic refresh tick
"""

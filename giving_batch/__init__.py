"""
giving_batch -- Recurring giving and background processing.

Provides recurring giving plans (anchored calendar cadence, automatic
pause after consecutive failures), the background worker that drives the
expiry sweep, due retries and plan ticks, and the GivingOrchestrator that
wires every service onto one session.

Architecture:
    giving_batch/ is a top-level package.  Nothing in giving_kernel
    imports from giving_batch (apart from the lazy model import used by
    ``create_tables``).
"""

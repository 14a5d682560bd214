"""Delivery cadence and release engine.

Two producers feed the :class:`~echolight.release.executor.ReleaseExecutor`:
the posthumous release flow (cadence parser -> batch scheduler) and the
scheduled sweep for date-triggered messages that are due.
"""

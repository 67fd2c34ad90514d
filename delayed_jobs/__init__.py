"""
Delayed Job Dispatcher

An in-process asynchronous job scheduler with at-least-once execution of named
jobs against opaque business entities, safe under concurrent execution from
multiple service replicas sharing one database.
"""

__version__ = "1.0.0"

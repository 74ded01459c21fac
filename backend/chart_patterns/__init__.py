"""
Stored predicate patterns evaluated against chart contexts in a RestrictedPython sandbox.
"""

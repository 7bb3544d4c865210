"""
lexicard: vocabulary flashcards with spaced repetition and two-replica sync.

A local replica keeps the device usable offline; an optional per-user remote
replica backs the collection up and carries it between devices.
"""

__version__ = "0.1.0"

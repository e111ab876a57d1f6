"""Execution core for repackaging Dify plugins with offline dependencies.

Decides whether a repackaging task runs on the host or inside a running
plugin-daemon container, then moves the task's artifacts across that
boundary.
"""

__version__ = "1.0.0"

"""
Ping-pong match tracker.

Records two-player matches, validates reported final scores, moves each match
through its lifecycle and derives per-player statistics from completed
matches.
"""

__version__ = "0.1.0"

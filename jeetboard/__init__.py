"""
Jeetboard - Fumble detection and leaderboard service.

Detects sales that preceded a price rally, scores wallets by the share of
value they fumbled, and ranks opted-in users on a cached leaderboard.
"""

__version__ = "0.1.0"

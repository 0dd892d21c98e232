"""
radiobox: a small internet radio station.

Listeners submit tracks (uploads or YouTube links), which play one at a time
in submission order; finished files are deleted after a grace period. A live
voice path relays recorded clips to an Icecast-style broadcast endpoint, and
a chat sits alongside.
"""

__version__ = "1.0.0"

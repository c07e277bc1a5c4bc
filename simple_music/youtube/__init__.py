"""
YouTube Music search and duration-based candidate ranking.
"""

from simple_music.youtube.models import CandidateMatch
from simple_music.youtube.resolver import TrackResolver, pick_closest, rank_by_duration

__all__ = [
    "CandidateMatch",
    "TrackResolver",
    "pick_closest",
    "rank_by_duration",
]

"""
Matching Engine

Finds professionals around a tender and ranks them by matching score:
- candidate_finder.py - directory query + haversine radius + rating threshold
- scorer.py           - fixed-weight 0-100 score and match reasons
"""

from .candidate_finder import CandidateFinder, MatchingCriteria
from .scorer import MatchScorer, compute_matching_score, build_match_reasons

__all__ = [
    'CandidateFinder',
    'MatchingCriteria',
    'MatchScorer',
    'compute_matching_score',
    'build_match_reasons',
]

"""Approximate substring search with an edit-distance budget.

WHY: Book text and speech-to-text output never agree exactly: the
recognizer substitutes homophones, drops short words, and punctuates
differently. Every alignment search therefore asks "where in this
haystack is the substring closest to this sentence, if any is within N
edits?".

HOW: Two passes.
  1. A bit-parallel scan (Myers/Hyyrö) computes, for every end position
     in the haystack, the smallest edit distance between the query and
     any substring ending there. Python ints serve as arbitrary-width bit
     vectors, so queries of any length take a single pass.
  2. For the end positions that reach the minimum distance, candidate
     start positions are checked with rapidfuzz's Levenshtein distance
     to recover the exact matched substring.

RULES:
- Distance counts single-character inserts, deletes and substitutions
- The lowest distance wins; on ties the earliest start wins, then the
  earliest end
- No normalization happens here; callers lowercase and collapse
  whitespace before searching
- Empty query or empty haystack never matches
"""

from __future__ import annotations

from dataclasses import dataclass

from rapidfuzz.distance import Levenshtein


@dataclass(frozen=True)
class NearestMatch:
    """Best approximate occurrence of a query inside a haystack."""

    index: int
    match: str
    distance: int

    @property
    def end(self) -> int:
        return self.index + len(self.match)


def _end_distances(query: str, haystack: str) -> list[int]:
    """Edit distance of the best substring ending at each haystack position.

    Returns a list d where d[j] is the minimum distance between query and
    any substring haystack[i:j + 1].
    """
    m = len(query)
    mask = (1 << m) - 1
    high = 1 << (m - 1)

    peq: dict[str, int] = {}
    for i, ch in enumerate(query):
        peq[ch] = peq.get(ch, 0) | (1 << i)

    pv = mask
    mv = 0
    score = m
    distances: list[int] = []

    for ch in haystack:
        eq = peq.get(ch, 0)
        xv = eq | mv
        xh = (((eq & pv) + pv) ^ pv) | eq
        ph = mv | (~(xh | pv) & mask)
        mh = pv & xh
        if ph & high:
            score += 1
        elif mh & high:
            score -= 1
        ph = (ph << 1) & mask
        mh = (mh << 1) & mask
        pv = mh | (~(xv | ph) & mask)
        mv = ph & xv
        distances.append(score)

    return distances


def find_nearest_match(query: str, haystack: str, max_distance: int) -> NearestMatch | None:
    """Find the substring of haystack closest to query within max_distance edits.

    Args:
        query: Normalized search string.
        haystack: Normalized text to search.
        max_distance: Largest acceptable edit distance (inclusive).

    Returns:
        The best NearestMatch, or None when nothing is within budget.
    """
    if not query or not haystack or max_distance < 0:
        return None

    distances = _end_distances(query, haystack)
    best = min(distances)
    if best > max_distance:
        return None

    m = len(query)
    found: tuple[int, int] | None = None

    for j, d in enumerate(distances):
        if d != best:
            continue
        end = j + 1
        lowest_start = max(0, end - m - best)
        if found is not None and lowest_start > found[0]:
            # Ends only grow from here, so no later end can start earlier.
            break
        highest_start = min(end - 1, end - m + best)
        for start in range(lowest_start, highest_start + 1):
            if found is not None and start >= found[0]:
                break
            if Levenshtein.distance(query, haystack[start:end], score_cutoff=best) == best:
                found = (start, end)
                break

    if found is None:
        return None
    start, end = found
    return NearestMatch(index=start, match=haystack[start:end], distance=best)

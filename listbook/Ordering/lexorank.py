# lexorank.py
# Description: Fractional rank keys for syncable list ordering.
#
# A rank is a string that sorts (plain codepoint order) between its two neighbours.
# Storing a rank instead of an array position lets folder and order changes merge
# across devices without renumbering siblings.
#
# Imports
from typing import Optional
#
########################################################################################################################
#
# Functions:

# Boundary markers, never assigned as real ranks
MIN_RANK = "000000"
MAX_RANK = "zzzzzz"

# Alphabet bounds used when one of the strings is exhausted ('0' .. 'z')
MIN_CHAR = ord("0")
MAX_CHAR = ord("z")


def generate_rank(lower: Optional[str], upper: Optional[str]) -> str:
    """
    Generate a rank that sorts strictly between `lower` and `upper`.

    Args:
        lower: Rank of the item before, or None when inserting first.
        upper: Rank of the item after, or None when inserting last.

    Returns:
        A new rank string `r` with `lower < r < upper`.
    """
    return midpoint(lower or MIN_RANK, upper or MAX_RANK)


def midpoint(lower: str, upper: str) -> str:
    """Find the lexicographic midpoint between two strings (`lower < upper`)."""
    result = []
    upper_open = False
    i = 0
    while True:
        char_a = ord(lower[i]) if i < len(lower) else MIN_CHAR
        if upper_open or i >= len(upper):
            char_b = MAX_CHAR
        else:
            char_b = ord(upper[i])

        if char_a == char_b:
            result.append(chr(char_a))
            i += 1
            continue

        mid = (char_a + char_b) // 2
        if mid == char_a:
            # No room at this position: keep lower's character and go one deeper.
            # The prefix is now below upper, so upper no longer bounds deeper positions.
            result.append(chr(char_a))
            upper_open = True
            i += 1
            continue

        result.append(chr(mid))
        return "".join(result)

#
# End of lexorank.py
########################################################################################################################

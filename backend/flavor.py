"""Rank words and optional humor lines for answer results."""
import random
from typing import Optional

from num2words import num2words

CORRECT_HUMOR = [
    "Correct! You're on a roll.",
    "You nailed it! 🎯",
    "Right answer, right attitude.",
    "Spot on! Your brain deserves a snack.",
    "Boom! Knowledge unlocked.",
]
WRONG_HUMOR_FALLBACK = "We'll call that a warm-up. The next one's yours."


def ordinal_word(n: int) -> str:
    """Spell a rank as an English ordinal: 1 -> 'first', 21 -> 'twenty-first'."""
    return num2words(n, to="ordinal")


def humor_message(question: Optional[dict], correct: bool,
                  rng: Optional[random.Random] = None) -> Optional[str]:
    if not question:
        return None
    if correct:
        return (rng or random).choice(CORRECT_HUMOR)
    return question.get("wrong_humor") or WRONG_HUMOR_FALLBACK

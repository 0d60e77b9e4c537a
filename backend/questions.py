import re
import json
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)

MAX_QUESTION_TEXT_LENGTH = 2000
MAX_CHOICE_LENGTH = 500
MAX_CATEGORY_LENGTH = 100
MAX_EXPLANATION_LENGTH = 2000
DEFAULT_CATEGORY = "General"


DEFAULT_QUESTIONS: List[dict] = [
    {
        "id": "q-capital-australia",
        "text": "What is the capital city of Australia?",
        "category": "Geography",
        "choices": ["Sydney", "Melbourne", "Canberra", "Perth"],
        "correct_index": 2,
        "explanation": "Canberra was purpose-built as a compromise between Sydney and Melbourne.",
        "wrong_humor": "Close enough for a postcard, not for the parliament.",
    },
    {
        "id": "q-red-planet",
        "text": "Which planet is known as the Red Planet?",
        "category": "Science",
        "choices": ["Venus", "Mars", "Jupiter", "Mercury"],
        "correct_index": 1,
        "explanation": "Iron oxide on its surface gives Mars its reddish colour.",
        "wrong_humor": "That planet is blushing, but not red enough.",
    },
    {
        "id": "q-hexagon-sides",
        "text": "How many sides does a hexagon have?",
        "category": "Math",
        "choices": ["Five", "Six", "Seven", "Eight"],
        "correct_index": 1,
        "explanation": "'Hex' comes from the Greek word for six.",
    },
    {
        "id": "q-mona-lisa",
        "text": "Who painted the Mona Lisa?",
        "category": "Art",
        "choices": ["Michelangelo", "Raphael", "Leonardo da Vinci", "Donatello"],
        "correct_index": 2,
        "explanation": "Leonardo worked on it from around 1503 until late in his life.",
        "wrong_humor": "Right era, wrong turtle.",
    },
    {
        "id": "q-largest-ocean",
        "text": "What is the largest ocean on Earth?",
        "category": "Geography",
        "choices": ["Atlantic", "Indian", "Arctic", "Pacific"],
        "correct_index": 3,
        "explanation": "The Pacific covers roughly a third of the planet's surface.",
    },
    {
        "id": "q-water-boil",
        "text": "At sea level, water boils at what temperature in Celsius?",
        "category": "Science",
        "choices": ["90", "100", "110", "120"],
        "correct_index": 1,
    },
    {
        "id": "q-python-creator",
        "text": "Who created the Python programming language?",
        "category": "Technology",
        "choices": ["Guido van Rossum", "James Gosling", "Dennis Ritchie", "Bjarne Stroustrup"],
        "correct_index": 0,
        "explanation": "Guido van Rossum released the first version in 1991.",
        "wrong_humor": "That one made a different snake... err, language.",
    },
    {
        "id": "q-true-spider-insect",
        "text": "True or false: spiders are insects.",
        "category": "Nature",
        "choices": ["True", "False"],
        "correct_index": 1,
        "explanation": "Spiders are arachnids: eight legs and two body segments.",
    },
]


def _sanitize_text(text: str) -> str:
    """Strip HTML tags and control characters from catalog text."""
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


def _normalize_question(raw: dict, position: int) -> Optional[dict]:
    """Validate one catalog record and return it in canonical form, or None."""
    if not isinstance(raw, dict):
        logger.warning("Question %d is not an object, skipping", position)
        return None
    correct_index = raw.get("correct_index", raw.get("correctIndex"))
    if "id" not in raw or not isinstance(raw.get("text"), str):
        logger.warning("Question %d missing id or text, skipping", position)
        return None
    choices = raw.get("choices")
    if not isinstance(choices, list) or len(choices) < 2:
        logger.warning("Question %s needs at least 2 choices, skipping", raw["id"])
        return None
    if isinstance(correct_index, bool) or not isinstance(correct_index, int) \
            or not (0 <= correct_index < len(choices)):
        logger.warning("Question %s has invalid correct index, skipping", raw["id"])
        return None

    question = {
        "id": raw["id"],
        "text": _sanitize_text(raw["text"])[:MAX_QUESTION_TEXT_LENGTH],
        "category": _sanitize_text(str(raw.get("category") or DEFAULT_CATEGORY))[:MAX_CATEGORY_LENGTH],
        "choices": [_sanitize_text(str(c))[:MAX_CHOICE_LENGTH] for c in choices],
        "correct_index": correct_index,
        "explanation": None,
        "wrong_humor": None,
    }
    explanation = raw.get("explanation")
    if explanation:
        question["explanation"] = _sanitize_text(str(explanation))[:MAX_EXPLANATION_LENGTH]
    wrong_humor = raw.get("wrong_humor", raw.get("wrongHumor"))
    if wrong_humor:
        question["wrong_humor"] = _sanitize_text(str(wrong_humor))[:MAX_EXPLANATION_LENGTH]
    return question


def parse_questions(data) -> List[dict]:
    """Accept a list of question records or an object with a 'questions' list."""
    if isinstance(data, dict):
        data = data.get("questions")
    if not isinstance(data, list):
        logger.error("Question catalog must be a list, got %s", type(data).__name__)
        return []
    catalog = []
    for position, raw in enumerate(data):
        question = _normalize_question(raw, position)
        if question is not None:
            catalog.append(question)
    return catalog


def load_questions(path: str = "") -> List[dict]:
    """Load the question catalog from a JSON file, or the built-in one."""
    if not path:
        return parse_questions(DEFAULT_QUESTIONS)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Could not load questions from %s: %s", path, e)
        return []
    catalog = parse_questions(data)
    logger.info("Loaded %d questions from %s", len(catalog), path)
    return catalog

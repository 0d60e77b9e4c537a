"""
Authoritative game loop for the live trivia server.

All state transitions run synchronously on the event loop thread: a join, an
answer or a timer callback runs to completion before the next one starts, so
the "correct so far" count seen by each submission is exactly the set of
submissions processed before it. Outbound messages go through a gateway that
only enqueues; nothing here awaits I/O.
"""
import re
import time
import random
import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional

import config
from flavor import humor_message, ordinal_word

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    QUESTION = "question"
    REVEAL = "reveal"


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------

class GameError(Exception):
    """A recoverable rejection, reported to the requesting session only."""
    message = "Request rejected."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class NameTaken(GameError):
    message = "That name is already taken. Please choose a different name."


class UnknownPlayer(GameError):
    message = "Unknown player."


class PhaseMismatch(GameError):
    message = "Not accepting answers right now."


class StaleQuestion(GameError):
    message = "Question no longer active."


class DuplicateSubmission(GameError):
    message = "You already answered."


class LateJoinLocked(GameError):
    message = "You joined mid-question. Please wait for the next question."


# ---------------------------------------------------------------------------
# Shuffle bag
# ---------------------------------------------------------------------------

class ShuffleBag:
    """Random traversal of catalog indices with no repeats until exhausted."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()
        self.order: List[int] = []
        self.cursor = -1

    def _rebuild(self, catalog_size: int):
        self.order = list(range(catalog_size))
        self.rng.shuffle(self.order)
        self.cursor = -1

    def next(self, catalog_size: int) -> int:
        if catalog_size <= 0:
            raise ValueError("Cannot draw from an empty catalog")
        if len(self.order) != catalog_size or self.cursor >= len(self.order) - 1:
            self._rebuild(catalog_size)
        self.cursor += 1
        return self.order[self.cursor]


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------

class PlayerRegistry:
    def __init__(self, max_name_length: int = config.MAX_NAME_LENGTH):
        self.max_name_length = max_name_length
        self.players: Dict[str, dict] = {}  # player_id -> record
        self.name_to_id: Dict[str, str] = {}

    def sanitize_name(self, raw) -> str:
        name = raw if isinstance(raw, str) else ""
        name = re.sub(r'<[^>]+>', '', name)
        name = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', name)
        name = name.strip()[:self.max_name_length]
        return name or config.DEFAULT_PLAYER_NAME

    def get(self, player_id: str) -> Optional[dict]:
        return self.players.get(player_id)

    def join(self, player_id: str, desired_name, active_question_id=None) -> dict:
        """Bind a session to a display name, reclaiming it if its owner is gone.

        A name held by a connected player is refused. A name held by a
        disconnected player is taken over together with its score, and the old
        record is dropped. A session that already joined keeps its record.
        """
        player = self.players.get(player_id)
        if player is None:
            name = self.sanitize_name(desired_name)
            existing_id = self.name_to_id.get(name)
            existing = self.players.get(existing_id) if existing_id is not None else None
            if existing is not None and existing["connected"]:
                raise NameTaken()

            player = {
                "id": player_id,
                "name": name,
                "score": existing["score"] if existing else 0,
                "connected": True,
                "locked_until_question_id": None,
                "last_answer": None,
            }
            if existing is not None:
                del self.players[existing_id]
                logger.info("Player '%s' reclaimed with score %d", name, player["score"])
            else:
                logger.info("Player '%s' joined", name)
            self.players[player_id] = player
            self.name_to_id[name] = player_id
        else:
            player["connected"] = True

        # Late joiners sit out the question already in progress
        player["locked_until_question_id"] = active_question_id
        return player

    def disconnect(self, player_id: str) -> Optional[dict]:
        player = self.players.get(player_id)
        if player is not None:
            player["connected"] = False
            logger.info("Player '%s' disconnected (score %d kept)", player["name"], player["score"])
        return player

    def connected_count(self) -> int:
        return sum(1 for p in self.players.values() if p["connected"])

    def leaderboard(self, limit: int = config.LEADERBOARD_LIMIT) -> List[dict]:
        ranked = sorted(
            self.players.values(),
            key=lambda p: (-p["score"], p["name"].casefold(), p["name"]),
        )
        return [{"id": p["id"], "name": p["name"], "score": p["score"]} for p in ranked[:limit]]


def public_player(player: dict) -> dict:
    last = player.get("last_answer")
    return {
        "id": player["id"],
        "name": player["name"],
        "score": player["score"],
        "connected": player["connected"],
        "lockedUntilQuestionId": player.get("locked_until_question_id"),
        "lastAnswer": {
            "questionId": last["question_id"],
            "correct": last["correct"],
            "pointsAwarded": last["points_awarded"],
        } if last else None,
    }


# ---------------------------------------------------------------------------
# Rounds and scoring
# ---------------------------------------------------------------------------

class Round:
    """Submissions for a single question; replaced when the next one starts."""

    def __init__(self, question: dict, started_at: int, duration_ms: int):
        self.question = question
        self.started_at = started_at
        self.ends_at = started_at + duration_ms
        self.submissions: Dict[str, dict] = {}

    def has_answered(self, player_id: str) -> bool:
        return player_id in self.submissions

    def correct_so_far(self) -> int:
        return sum(1 for s in self.submissions.values() if s["correct"])

    def record(self, player_id: str, choice_index, correct: bool, points: int, answered_at: int):
        self.submissions[player_id] = {
            "choice_index": choice_index,
            "correct": correct,
            "points": points,
            "answered_at": answered_at,
        }


def score_correct_answer(connected_count: int, correct_so_far: int) -> int:
    """Points for a correct answer.

    Every connected player is worth POINTS_PER_PLAYER, and each correct answer
    already recorded this round takes the same amount away. The current
    submission is not part of ``correct_so_far``. No floor is applied.
    """
    return config.POINTS_PER_PLAYER * connected_count - config.POINTS_PER_PLAYER * correct_so_far


def _coerce_choice(value) -> Optional[int]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return int(number) if number.is_integer() else None


# ---------------------------------------------------------------------------
# Game state and scheduler
# ---------------------------------------------------------------------------

class GameState:
    """Everything one game instance owns: catalog, players, phase, round."""

    def __init__(self, questions: List[dict], rng: Optional[random.Random] = None):
        self.questions = questions
        self.registry = PlayerRegistry()
        self.bag = ShuffleBag(rng)
        self.phase = Phase.IDLE
        self.round: Optional[Round] = None
        self.next_question_at: Optional[int] = None  # ms; None when nothing is scheduled

    @property
    def active_question(self) -> Optional[dict]:
        if self.phase == Phase.QUESTION and self.round is not None:
            return self.round.question
        return None

    def question_payload(self, include_answer: bool = False) -> Optional[dict]:
        if self.round is None:
            return None
        question = self.round.question
        payload = {
            "id": question["id"],
            "text": question["text"],
            "category": question.get("category") or "General",
            "choices": question["choices"],
            "endsAt": self.round.ends_at,
        }
        if include_answer:
            payload["correctIndex"] = question["correct_index"]
            payload["explanation"] = question.get("explanation")
        return payload


class LoopTimer:
    """Single-shot timers on the running asyncio loop, with a ms wall clock."""

    def now(self) -> int:
        return int(time.time() * 1000)

    def call_later(self, delay: float, callback: Callable[[], None]):
        return asyncio.get_running_loop().call_later(delay, callback)


class TriviaGame:
    """Phase scheduler plus the join/answer/disconnect command handlers.

    ``gateway`` must provide ``send(session_id, message)`` and
    ``broadcast(message)``; ``timer`` provides ``now()`` in milliseconds and
    ``call_later(delay, callback)`` returning a handle with ``cancel()``.
    """

    def __init__(self, questions: List[dict], gateway, timer=None,
                 rng: Optional[random.Random] = None,
                 question_duration: float = config.QUESTION_DURATION,
                 reveal_duration: float = config.REVEAL_DURATION,
                 idle_gap: float = config.IDLE_GAP,
                 startup_delay: float = config.STARTUP_DELAY,
                 humor_mode: bool = config.HUMOR_MODE):
        self.rng = rng or random.Random()
        self.state = GameState(questions, self.rng)
        self.gateway = gateway
        self.timer = timer or LoopTimer()
        self.question_duration = question_duration
        self.reveal_duration = reveal_duration
        self.idle_gap = idle_gap
        self.startup_delay = startup_delay
        self.humor_mode = humor_mode
        self._pending = None

    # --- Scheduling ---

    def start(self):
        logger.info("Game loop starting in %.1fs with %d questions",
                    self.startup_delay, len(self.state.questions))
        self._arm(self.startup_delay)
        self.state.next_question_at = self.timer.now() + int(self.startup_delay * 1000)

    def stop(self):
        self._cancel_timer()
        self.state.next_question_at = None

    def _cancel_timer(self):
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _arm(self, delay: float):
        self._cancel_timer()
        self._pending = self.timer.call_later(delay, self._on_timer)

    def _on_timer(self):
        self._pending = None
        try:
            self.advance()
        except Exception:
            logger.exception("Error advancing game from phase %s", self.state.phase.value)

    def advance(self):
        """Move to the next phase. Any pending timer is replaced."""
        self._cancel_timer()
        if self.state.phase == Phase.QUESTION:
            self._enter_reveal()
        elif self.state.phase == Phase.REVEAL:
            self._enter_idle()
        else:
            self._start_question()

    def _start_question(self):
        state = self.state
        if not state.questions:
            state.phase = Phase.IDLE
            logger.warning("Question catalog is empty; staying idle")
            state.next_question_at = None
            self.broadcast_state()
            return

        index = state.bag.next(len(state.questions))
        question = state.questions[index]
        state.round = Round(question, self.timer.now(), int(self.question_duration * 1000))
        state.phase = Phase.QUESTION
        state.next_question_at = None
        logger.info("Question %s started: %s", question["id"], question["text"][:80])
        self.broadcast_state()
        self._arm(self.question_duration)

    def _enter_reveal(self):
        # Points were awarded as answers arrived; nothing to tally here
        self.state.phase = Phase.REVEAL
        rnd = self.state.round
        logger.info("Revealing question %s (%d answers, %d correct)",
                    rnd.question["id"], len(rnd.submissions), rnd.correct_so_far())
        self.broadcast_state()
        self._arm(self.reveal_duration)

    def _enter_idle(self):
        self.state.phase = Phase.IDLE
        self.state.next_question_at = self.timer.now() + int(self.idle_gap * 1000)
        self.broadcast_state()
        self._arm(self.idle_gap)

    # --- Outbound ---

    def broadcast_state(self):
        state = self.state
        self.gateway.broadcast({"type": "leaderboard", "leaderboard": state.registry.leaderboard()})
        if state.phase == Phase.QUESTION:
            self.gateway.broadcast({"type": "question", **state.question_payload(False)})
        elif state.phase == Phase.REVEAL:
            self.gateway.broadcast({"type": "reveal", **state.question_payload(True)})
        else:
            self.gateway.broadcast({"type": "idle", "nextQuestionAt": state.next_question_at})

    def snapshot(self) -> dict:
        state = self.state
        return {
            "phase": state.phase.value,
            "question": state.question_payload(False) if state.phase == Phase.QUESTION else None,
            "reveal": state.question_payload(True) if state.phase == Phase.REVEAL else None,
            "leaderboard": state.registry.leaderboard(),
            "connected": state.registry.connected_count(),
            "nextQuestionAt": state.next_question_at if state.phase == Phase.IDLE else None,
        }

    # --- Commands ---

    def handle_message(self, session_id: str, message: dict):
        msg_type = message.get("type")
        if msg_type == "join":
            self.join(session_id, message.get("name"))
        elif msg_type == "answer":
            self.answer(session_id, message.get("questionId"), message.get("choiceIndex"))
        else:
            logger.debug("Ignoring unknown message type %r from %s", msg_type, session_id)

    def join(self, session_id: str, name):
        active = self.state.active_question
        try:
            player = self.state.registry.join(
                session_id, name, active["id"] if active else None)
        except NameTaken as e:
            logger.debug("Join rejected for %s: %s", session_id, e)
            self.gateway.send(session_id, {"type": "join_error", "reason": str(e)})
            return

        snapshot = self.snapshot()
        self.gateway.send(session_id, {
            "type": "joined",
            "self": public_player(player),
            "leaderboard": snapshot["leaderboard"],
            "phase": snapshot["phase"],
            "question": snapshot["question"],
            "reveal": snapshot["reveal"],
        })
        self.broadcast_state()

    def submit_answer(self, player_id: str, question_id, choice_index) -> dict:
        """Validate and score one submission. Raises a GameError on rejection."""
        state = self.state
        rnd = state.round
        if state.phase != Phase.QUESTION or rnd is None:
            raise PhaseMismatch()
        if question_id != rnd.question["id"]:
            raise StaleQuestion()
        if rnd.has_answered(player_id):
            raise DuplicateSubmission()
        player = state.registry.get(player_id)
        if player is None:
            raise UnknownPlayer()
        if player["locked_until_question_id"] == rnd.question["id"]:
            raise LateJoinLocked()

        choice = _coerce_choice(choice_index)
        correct = choice == rnd.question["correct_index"]
        points = 0
        rank = None
        if correct:
            correct_so_far = rnd.correct_so_far()
            rank = correct_so_far + 1
            points = score_correct_answer(state.registry.connected_count(), correct_so_far)

        rnd.record(player_id, choice, correct, points, self.timer.now())
        if correct:
            player["score"] += points
        player["last_answer"] = {
            "question_id": question_id,
            "correct": correct,
            "points_awarded": points,
        }
        return {
            "correct": correct,
            "points": points,
            "rank": rank,
            "leaderboard": state.registry.leaderboard(),
        }

    def answer(self, session_id: str, question_id, choice_index):
        try:
            result = self.submit_answer(session_id, question_id, choice_index)
        except GameError as e:
            logger.debug("Answer rejected for %s: %s", session_id, e)
            self.gateway.send(session_id, {"type": "answer_result", "ok": False, "reason": str(e)})
            return

        rank = result["rank"]
        humor = None
        if self.humor_mode:
            humor = humor_message(self.state.round.question, result["correct"], self.rng)
        self.gateway.send(session_id, {
            "type": "answer_result",
            "ok": True,
            "correct": result["correct"],
            "points": result["points"],
            "rank": rank,
            "rankWord": ordinal_word(rank) if rank else None,
            "humor": humor,
            "leaderboard": result["leaderboard"],
        })
        self.gateway.broadcast({"type": "leaderboard", "leaderboard": result["leaderboard"]})

    def disconnect(self, session_id: str):
        self.state.registry.disconnect(session_id)

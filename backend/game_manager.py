from enum import Enum
from threading import RLock
from typing import Dict, Iterator, Optional, Tuple
import uuid
import logging

import config
import snapshots
from errors import ValidationError, ConflictError, AlreadyAnswered
from question_store import Question, QuestionStore, validate_question
from rate_limiter import SlidingWindowLimiter

logger = logging.getLogger(__name__)


class AdvanceOutcome(Enum):
    ADVANCED = "advanced"
    NO_MORE_QUESTIONS = "no_more_questions"


class Player:
    def __init__(self, player_id: str, join_order: int):
        self.id = player_id
        self.join_order = join_order
        self.score = 0
        self.answered: Dict[str, str] = {}  # question_id -> choice, write-once

    def reset(self):
        self.score = 0
        self.answered = {}


class PlayerRegistry:
    """Player id -> Player. Players are never removed, only reset."""

    def __init__(self, max_players: int = config.MAX_PLAYERS):
        self.max_players = max_players
        self._players: Dict[str, Player] = {}
        self._next_order = 0

    def __len__(self) -> int:
        return len(self._players)

    def __iter__(self) -> Iterator[Player]:
        return iter(self._players.values())

    def __contains__(self, player_id: str) -> bool:
        return player_id in self._players

    def get(self, player_id: Optional[str]) -> Optional[Player]:
        if not player_id:
            return None
        return self._players.get(player_id)

    def ensure_capacity(self):
        if len(self._players) >= self.max_players:
            raise ConflictError("Player limit reached")

    def create(self, player_id: Optional[str] = None) -> Player:
        self.ensure_capacity()
        player_id = player_id or uuid.uuid4().hex
        player = Player(player_id, self._next_order)
        self._next_order += 1
        self._players[player_id] = player
        return player

    def reset_all(self):
        for player in self._players.values():
            player.reset()


class AnswerTally:
    def __init__(self):
        self.counts: Dict[str, int] = {}
        self.reset()

    def reset(self):
        self.counts = {key: 0 for key in config.OPTION_KEYS}

    def record(self, choice: str):
        self.counts[choice] += 1

    def total(self) -> int:
        return sum(self.counts.values())

    def as_dict(self) -> Dict[str, int]:
        return dict(self.counts)


class GameSession:
    """The singleton quiz game: question pointer, reveal flag and everything it owns."""

    def __init__(self):
        self.questions = QuestionStore()
        self.players = PlayerRegistry()
        self.tally = AnswerTally()
        self.active = False
        self.current_index = -1
        self.revealed = False
        self.ended = False  # set by end(), cleared by start()
        self.game_number = 0
        self.version = 0

    @property
    def last_index(self) -> int:
        return len(self.questions) - 1

    def current_question(self) -> Optional[Question]:
        if not self.active:
            return None
        return self.questions.get(self.current_index)

    def is_complete(self) -> bool:
        return self.revealed and self.current_index >= 0 and self.current_index == self.last_index

    def bump(self):
        self.version += 1


class GameManager:
    """Owns the game session; every mutation and projection runs under one lock."""

    def __init__(self, limiter: Optional[SlidingWindowLimiter] = None):
        self.session = GameSession()
        self.limiter = limiter if limiter is not None else SlidingWindowLimiter()
        self.lock = RLock()

    def reset(self):
        """Drop all state. Used by tests and on process start."""
        with self.lock:
            self.session = GameSession()
            self.limiter.reset()

    # --- Question store ---

    def add_question(self, text, options, correct_answer) -> Tuple[Question, int]:
        """Validate and append a question. Returns it with the new question count."""
        question = validate_question(text, options, correct_answer)
        with self.lock:
            self.session.questions.append(question)
            self.session.bump()
            total = len(self.session.questions)
            logger.info("Question %s added (%d total)", question.id, total)
            return question, total

    def delete_question(self, question_id: str) -> int:
        """Delete a question while no game is running. Returns remaining count."""
        with self.lock:
            session = self.session
            if session.active:
                raise ConflictError("Cannot delete questions while game is active")
            removed_index = session.questions.remove(question_id)
            if session.current_index == removed_index:
                session.current_index = -1
                session.revealed = False
            elif session.current_index > removed_index:
                session.current_index -= 1
            session.current_index = min(session.current_index, session.last_index)
            session.bump()
            return len(session.questions)

    # --- Session state machine ---

    def start(self) -> int:
        with self.lock:
            session = self.session
            if session.active:
                raise ConflictError("Game is already active")
            if len(session.questions) == 0:
                raise ValidationError("Cannot start game without questions. Please add questions first.")
            session.active = True
            session.current_index = -1
            session.revealed = False
            session.ended = False
            session.tally.reset()
            session.players.reset_all()
            session.game_number += 1
            session.bump()
            logger.info("Game %d started with %d questions", session.game_number, len(session.questions))
            return len(session.questions)

    def advance(self) -> AdvanceOutcome:
        with self.lock:
            session = self.session
            if not session.active:
                raise ConflictError("Game is not active. Please start the game first.")
            if session.current_index >= session.last_index:
                return AdvanceOutcome.NO_MORE_QUESTIONS
            session.current_index += 1
            session.revealed = False
            session.tally.reset()
            session.bump()
            logger.info("Advanced to question %d of %d", session.current_index + 1, len(session.questions))
            return AdvanceOutcome.ADVANCED

    def reveal(self) -> dict:
        with self.lock:
            session = self.session
            if not session.active:
                raise ConflictError("Game is not active")
            question = session.current_question()
            if question is None:
                raise ConflictError("No active question to reveal")
            if session.revealed:
                raise ConflictError("Answer already revealed for this question")
            session.revealed = True
            correct_players = 0
            for player in session.players:
                if player.answered.get(question.id) == question.correct_answer:
                    player.score += 1
                    correct_players += 1
            session.bump()
            total_responses = session.tally.total()
            logger.info("Answer revealed for question %s: %s (%d/%d correct)",
                        question.id, question.correct_answer, correct_players, total_responses)
            return {
                "correctAnswer": question.correct_answer,
                "answerStats": session.tally.as_dict(),
                "playerCount": len(session.players),
                "totalResponses": total_responses,
                "correctResponses": correct_players,
            }

    def end(self) -> int:
        with self.lock:
            session = self.session
            if not session.active:
                raise ConflictError("No active game to end")
            session.active = False
            session.current_index = -1
            session.ended = True
            session.bump()
            logger.info("Game %d ended", session.game_number)
            return len(session.players)

    # --- Players & submissions ---

    def join(self) -> str:
        with self.lock:
            player = self.session.players.create()
            logger.info("Player %s joined (%d total)", player.id, len(self.session.players))
            return player.id

    def submit(self, player_id, choice) -> str:
        """Accept exactly one answer per player per question."""
        if choice not in config.OPTION_KEYS:
            raise ValidationError("Answer must be A, B, C, or D")
        if not isinstance(player_id, str) or not player_id or len(player_id) > config.MAX_PLAYER_ID_LENGTH:
            raise ValidationError(f"Player ID must be 1-{config.MAX_PLAYER_ID_LENGTH} characters")

        with self.lock:
            self.limiter.check(player_id)
            session = self.session
            if not session.active:
                raise ConflictError("Game is not active")
            question = session.current_question()
            if question is None:
                raise ConflictError("No question is open for answers")
            if session.revealed:
                raise ConflictError("Answer already revealed for this question")

            player = session.players.get(player_id)
            if player is not None and question.id in player.answered:
                raise AlreadyAnswered("You have already answered this question")
            if player is None:
                player = session.players.create(player_id)
                logger.info("Player %s joined on first submission", player_id)

            player.answered[question.id] = choice
            session.tally.record(choice)
            session.bump()
            return choice

    # --- Snapshots ---

    def player_view(self, player_id: Optional[str] = None) -> dict:
        with self.lock:
            return snapshots.player_view(self.session, player_id)

    def moderator_view(self) -> dict:
        with self.lock:
            return snapshots.moderator_view(self.session)


game_manager = GameManager()

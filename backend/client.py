"""Polling client for players and the moderator dashboard.

The server keeps no per-connection state, so the player client rebuilds its
whole UI from each snapshot. ``reconcile`` is the pure part: it folds one
snapshot into a ``LocalCache`` and returns the view to render. ``PlayerPoller``
drives it on a fixed interval and persists the cache through ``LocalStore``.
"""
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Set, Tuple
from pathlib import Path
import asyncio
import json
import logging

import httpx

import config

logger = logging.getLogger(__name__)


@dataclass
class LocalCache:
    player_id: Optional[str] = None
    game_number: int = 0
    answers: Dict[str, str] = field(default_factory=dict)  # question_id -> my choice
    scored: Set[str] = field(default_factory=set)  # question_ids whose reveal was counted
    score: int = 0
    final_score: Optional[int] = None

    def copy(self) -> "LocalCache":
        return replace(self, answers=dict(self.answers), scored=set(self.scored))

    def clear_game(self):
        self.answers.clear()
        self.scored.clear()
        self.score = 0
        self.final_score = None

    def to_dict(self) -> dict:
        return {
            "player_id": self.player_id,
            "game_number": self.game_number,
            "answers": dict(self.answers),
            "scored": sorted(self.scored),
            "score": self.score,
            "final_score": self.final_score,
        }

    @classmethod
    def from_dict(cls, data) -> "LocalCache":
        if not isinstance(data, dict):
            raise ValueError("client cache must be a JSON object")
        player_id = data.get("player_id")
        final_score = data.get("final_score")
        return cls(
            player_id=player_id if isinstance(player_id, str) and player_id else None,
            game_number=int(data.get("game_number", 0)),
            answers={str(q): str(c) for q, c in dict(data.get("answers") or {}).items()},
            scored={str(q) for q in data.get("scored") or []},
            score=int(data.get("score", 0)),
            final_score=None if final_score is None else int(final_score),
        )


@dataclass
class PlayerView:
    # connecting, no_questions, waiting, lobby, question, revealed, ended
    screen: str = "connecting"
    question: Optional[dict] = None
    question_number: int = 0
    total_questions: int = 0
    my_answer: Optional[str] = None
    options_enabled: bool = False
    correct_answer: Optional[str] = None
    answer_stats: Optional[Dict[str, int]] = None
    score: int = 0
    final_score: Optional[int] = None
    game_complete: bool = False
    connection_lost: bool = False
    events: List[str] = field(default_factory=list)


def record_answer(cache: LocalCache, question_id: str, choice: str) -> LocalCache:
    new = cache.copy()
    new.answers[question_id] = choice
    return new


def forget_answer(cache: LocalCache, question_id: str) -> LocalCache:
    new = cache.copy()
    new.answers.pop(question_id, None)
    return new


def reconcile(cache: LocalCache, snapshot: dict) -> Tuple[LocalCache, PlayerView]:
    """Fold a player snapshot into the local cache.

    Nothing is assumed about earlier snapshots: a question seen for the first
    time already revealed renders the same as one watched from open to reveal.
    Reveal events fire once per question, guarded by ``cache.scored``.
    """
    new = cache.copy()
    view = PlayerView(
        total_questions=snapshot.get("totalQuestions", 0),
        question_number=snapshot.get("currentQuestionNumber", 0),
        game_complete=bool(snapshot.get("gameComplete")),
    )

    game_number = snapshot.get("gameNumber", 0)
    if game_number != new.game_number:
        # a game started (and maybe ended) that this client never saw begin
        new.clear_game()
        new.game_number = game_number

    server_score = snapshot.get("playerScore")

    if snapshot.get("gameEnded"):
        if server_score is not None:
            new.score = server_score
        new.final_score = new.score
        view.screen = "ended"
    elif not snapshot.get("isActive"):
        new.clear_game()
        view.screen = "no_questions" if view.total_questions == 0 else "waiting"
    elif not snapshot.get("currentQuestion"):
        view.screen = "lobby"
    else:
        question = snapshot["currentQuestion"]
        question_id = question["id"]
        view.question = question

        server_choice = snapshot.get("playerChoice")
        if server_choice:
            new.answers[question_id] = server_choice
        my_answer = new.answers.get(question_id)
        view.my_answer = my_answer

        if snapshot.get("answerRevealed"):
            correct = snapshot.get("correctAnswer")
            view.screen = "revealed"
            view.correct_answer = correct
            view.answer_stats = snapshot.get("answerStats")
            if question_id not in new.scored:
                new.scored.add(question_id)
                if my_answer is None:
                    view.events.append("missed")
                elif my_answer == correct:
                    new.score += 1
                    view.events.append("correct")
                else:
                    view.events.append("incorrect")
        else:
            view.screen = "question"
            view.options_enabled = my_answer is None and not snapshot.get("playerAnswered")

        if server_score is not None:
            new.score = server_score

    view.score = new.score
    view.final_score = new.final_score
    return new, view


class LocalStore:
    """Keeps a LocalCache in a JSON file so it survives client restarts."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self.cache = self._load()

    def _load(self) -> LocalCache:
        if self.path is None or not self.path.exists():
            return LocalCache()
        try:
            return LocalCache.from_dict(json.loads(self.path.read_text()))
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Discarding unreadable client cache %s: %s", self.path, e)
            return LocalCache()

    def save(self, cache: LocalCache):
        self.cache = cache
        if self.path is not None:
            self.path.write_text(json.dumps(cache.to_dict()))


def make_client(base_url: str, **kwargs) -> httpx.AsyncClient:
    """HTTP client for the pollers, with the configured request timeout."""
    kwargs.setdefault("timeout", config.CLIENT_TIMEOUT)
    return httpx.AsyncClient(base_url=base_url, **kwargs)


@dataclass
class SubmitResult:
    accepted: bool
    message: str
    retry_after: Optional[float] = None


class SnapshotPoller:
    """Fixed-interval poller with latest-wins response handling.

    Every tick starts a new request without cancelling earlier ones. Requests
    carry a local sequence number and a response older than the last applied
    one is dropped. Transport failures only flag ``connection_lost``.
    """

    path = "/"

    def __init__(self, client: httpx.AsyncClient, interval: float = config.POLL_INTERVAL,
                 on_update: Optional[Callable] = None):
        self.client = client
        self.interval = interval
        self.on_update = on_update
        self.connection_lost = False
        self._seq = 0
        self._applied_seq = 0
        self._wake = asyncio.Event()
        self._running = False
        self._inflight: Set[asyncio.Task] = set()

    def request_params(self) -> dict:
        return {}

    def request_headers(self) -> dict:
        return {}

    def apply(self, snapshot: dict):
        raise NotImplementedError

    def connection_changed(self):
        pass

    async def poll_once(self) -> bool:
        """Fetch one snapshot. Returns True if it was applied."""
        self._seq += 1
        seq = self._seq
        try:
            res = await self.client.get(self.path, params=self.request_params(),
                                        headers=self.request_headers())
            if res.status_code >= 500:
                raise httpx.HTTPStatusError(f"Server error {res.status_code}",
                                            request=res.request, response=res)
        except httpx.HTTPError as e:
            if seq > self._applied_seq:
                self._lose_connection(e)
            return False

        if seq < self._applied_seq:
            logger.debug("Dropping stale snapshot #%d (applied #%d)", seq, self._applied_seq)
            return False
        if res.status_code != 200:
            logger.warning("Poll rejected with status %d", res.status_code)
            return False

        self._applied_seq = seq
        self.connection_lost = False
        self.apply(res.json())
        return True

    def _lose_connection(self, error: Exception):
        if not self.connection_lost:
            logger.warning("Connection lost: %s", error)
            self.connection_lost = True
            self.connection_changed()

    def refresh(self):
        """Poll now instead of waiting for the next tick."""
        self._wake.set()

    # Browser-style triggers map to an immediate refresh
    on_network_restored = refresh
    on_foreground = refresh

    async def _tick(self):
        try:
            await self.poll_once()
        except Exception:
            logger.exception("Error while applying snapshot")

    async def run(self):
        self._running = True
        while self._running:
            task = asyncio.create_task(self._tick())
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    async def stop(self):
        self._running = False
        self._wake.set()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)


class PlayerPoller(SnapshotPoller):
    path = "/api/game-state"

    def __init__(self, client: httpx.AsyncClient, store: Optional[LocalStore] = None,
                 interval: float = config.POLL_INTERVAL,
                 on_update: Optional[Callable[[PlayerView], None]] = None):
        super().__init__(client, interval=interval, on_update=on_update)
        self.store = store or LocalStore()
        self.view = PlayerView()
        self._last_snapshot: Optional[dict] = None

    def request_params(self) -> dict:
        if self.store.cache.player_id:
            return {"playerId": self.store.cache.player_id}
        return {}

    def apply(self, snapshot: dict):
        self._last_snapshot = snapshot
        cache, view = reconcile(self.store.cache, snapshot)
        view.connection_lost = self.connection_lost
        self.store.save(cache)
        self._render(view)

    def connection_changed(self):
        self._render(replace(self.view, connection_lost=self.connection_lost, events=[]))

    def _render(self, view: PlayerView):
        self.view = view
        if self.on_update:
            self.on_update(view)

    def _rerender(self):
        if self._last_snapshot is not None:
            self.apply(self._last_snapshot)

    async def join(self) -> Optional[str]:
        """Get a player id from the server unless one is already cached.

        Returns None if the server could not hand one out; ``submit`` asks again.
        """
        if self.store.cache.player_id:
            return self.store.cache.player_id
        try:
            res = await self.client.post("/api/join")
            if res.status_code >= 500:
                raise httpx.HTTPStatusError(f"Server error {res.status_code}",
                                            request=res.request, response=res)
        except httpx.HTTPError as e:
            self._lose_connection(e)
            return None
        if res.status_code != 200:
            logger.warning("Join rejected with status %d", res.status_code)
            return None
        cache = self.store.cache.copy()
        cache.player_id = res.json()["playerId"]
        self.store.save(cache)
        logger.info("Joined as player %s", cache.player_id)
        return cache.player_id

    async def submit(self, choice: str) -> SubmitResult:
        question = self.view.question
        if question is None or self.view.screen != "question":
            return SubmitResult(False, "No question is open for answers")
        question_id = question["id"]
        if question_id in self.store.cache.answers:
            return SubmitResult(False, "You have already answered this question")
        if not await self.join():
            return SubmitResult(False, "Not connected to the game. Please try again.")

        # Echo locally so the options lock before the server replies
        self.store.save(record_answer(self.store.cache, question_id, choice))
        self._rerender()

        try:
            res = await self.client.post("/api/answer", json={
                "playerId": self.store.cache.player_id,
                "choice": choice,
            })
        except httpx.HTTPError as e:
            logger.warning("Answer submission failed: %s", e)
            self._rollback(question_id)
            return SubmitResult(False, "Network error. Please try again.")

        if res.status_code == 200:
            return SubmitResult(True, res.json().get("message", "Answer submitted successfully!"))

        body = res.json() if res.headers.get("content-type", "").startswith("application/json") else {}
        message = body.get("detail", "Failed to submit answer")
        if body.get("error") == "AlreadyAnswered":
            # the server's recorded choice arrives with the next snapshot
            return SubmitResult(False, message)
        self._rollback(question_id)
        return SubmitResult(False, message, retry_after=body.get("retryAfter"))

    def _rollback(self, question_id: str):
        self.store.save(forget_answer(self.store.cache, question_id))
        self._rerender()


class ModeratorPoller(SnapshotPoller):
    path = "/api/moderator/status"

    def __init__(self, client: httpx.AsyncClient, token: str,
                 interval: float = config.POLL_INTERVAL,
                 on_update: Optional[Callable[[dict], None]] = None):
        super().__init__(client, interval=interval, on_update=on_update)
        self.token = token
        self.status: Optional[dict] = None

    def request_headers(self) -> dict:
        return {"X-Moderator-Token": self.token}

    def apply(self, snapshot: dict):
        self.status = snapshot
        if self.on_update:
            self.on_update(snapshot)

    def connection_changed(self):
        logger.info("Moderator dashboard connection lost: %s", self.connection_lost)

"""Read-only projections of the game session served to polling clients.

Every function here is a pure read of a ``GameSession``; the caller holds the
game lock so a projection never observes a half-applied mutation.
"""
from typing import List, Optional


def _base_view(session) -> dict:
    question = session.current_question()
    return {
        "isActive": session.active,
        "answerRevealed": session.revealed,
        "totalQuestions": len(session.questions),
        "currentQuestionNumber": session.current_index + 1,
        "gameComplete": session.is_complete(),
        "gameEnded": session.ended and not session.active,
        "gameNumber": session.game_number,
        "version": session.version,
    }, question


def player_view(session, player_id: Optional[str] = None) -> dict:
    """Snapshot for a player. The correct answer and tally stay hidden until reveal."""
    view, question = _base_view(session)
    revealed = session.revealed and question is not None
    view["currentQuestion"] = question.to_dict(include_answer=False) if question else None
    view["correctAnswer"] = question.correct_answer if revealed else None
    view["answerStats"] = session.tally.as_dict() if revealed else None

    player = session.players.get(player_id)
    choice = None
    if player is not None and question is not None:
        choice = player.answered.get(question.id)
    view["playerScore"] = player.score if player else 0
    view["playerAnswered"] = choice is not None
    view["playerChoice"] = choice
    return view


def leaderboard(session) -> List[dict]:
    # ties keep join order
    ranked = sorted(session.players, key=lambda p: (-p.score, p.join_order))
    return [
        {"rank": i + 1, "playerId": p.id, "score": p.score}
        for i, p in enumerate(ranked)
    ]


def moderator_view(session) -> dict:
    view, question = _base_view(session)
    view["currentQuestionIndex"] = session.current_index
    view["currentQuestion"] = question.to_dict() if question else None
    view["correctAnswer"] = question.correct_answer if question else None
    view["answerStats"] = session.tally.as_dict()
    view["totalResponses"] = session.tally.total()
    view["playerCount"] = len(session.players)
    view["questions"] = [q.to_dict() for q in session.questions.all()]
    view["leaderboard"] = leaderboard(session)
    return view

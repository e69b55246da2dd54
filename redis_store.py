"""
Redis Store - Append-only learner history and mastery state.

Key Structure:
    learner:{learner_id}:logs    -> List (JSON of each answer event, append-only)
    learner:{learner_id}:mastery -> Hash (concept -> JSON MasteryState)
    learner:{learner_id}:exams   -> List (JSON of each exam summary)

The engines never touch this module; callers load state, run a pure
update, and write the result back.
"""

import json
import logging
from typing import Callable, Dict, List, Optional, Tuple

import redis

from core.config import settings
from core.exam_history import ExamSummary
from core.knowledge_graph import SessionLog, normalize_concept
from core.mastery_engine import MasteryState

logger = logging.getLogger(__name__)

MAX_EXAM_HISTORY = 100


class RedisStore:
    def __init__(self, client: Optional[redis.Redis] = None):
        """Connect to Redis using environment settings, or use the given client."""
        self.client = client or redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            password=settings.redis_password,
            db=settings.redis_db,
            decode_responses=True  # Return strings instead of bytes
        )

    # ==================== Key Builders ====================

    def _logs_key(self, learner_id: str) -> str:
        """Redis key for the answer log."""
        return f"learner:{learner_id}:logs"

    def _mastery_key(self, learner_id: str) -> str:
        """Redis key for per-concept mastery states."""
        return f"learner:{learner_id}:mastery"

    def _exams_key(self, learner_id: str) -> str:
        """Redis key for exam summaries."""
        return f"learner:{learner_id}:exams"

    # ==================== Answer Log ====================

    def _encode_log(self, log: SessionLog) -> str:
        return json.dumps({
            "concept": log.concept,
            "category": log.category,
            "is_correct": log.is_correct,
            "response_time_ms": log.response_time_ms,
            "mastery_pl": log.mastery_pl,
            "timestamp": log.timestamp,
        })

    def get_logs(self, learner_id: str, limit: Optional[int] = None) -> List[SessionLog]:
        """
        Get the most recent answer events, oldest first.

        Args:
            learner_id: Learner to query
            limit: Keep only the last `limit` events

        Returns:
            List of SessionLog
        """
        start = -limit if limit else 0
        raw = self.client.lrange(self._logs_key(learner_id), start, -1)
        return [SessionLog(**json.loads(r)) for r in raw]

    # ==================== Mastery State ====================

    def apply_answer(self, learner_id: str, concept: str,
                     update: Callable[[Optional[MasteryState]], MasteryState],
                     to_log: Callable[[MasteryState], SessionLog]
                     ) -> Tuple[Optional[MasteryState], MasteryState]:
        """
        Read, update and write one concept's state atomically.

        The mastery hash is WATCHed; the new state and its log entry are
        written in one MULTI, and the whole read-update-write is retried if
        another writer touched the hash in between.

        Args:
            learner_id: Learner identifier
            concept: Concept answered
            update: Pure function from the stored state (None if unseen) to the new one
            to_log: Builds the answer event from the new state

        Returns:
            (previous state, new state)
        """
        key = self._mastery_key(learner_id)
        field = normalize_concept(concept)

        def apply(pipe):
            raw = pipe.hget(key, field)
            previous = None if raw is None else MasteryState.from_dict(json.loads(raw))
            state = update(previous)

            pipe.multi()
            pipe.hset(key, field, json.dumps(state.to_dict()))
            pipe.rpush(self._logs_key(learner_id), self._encode_log(to_log(state)))
            return previous, state

        return self.client.transaction(apply, key, value_from_callable=True)

    def get_all_mastery(self, learner_id: str) -> Dict[str, MasteryState]:
        """Get states for every observed concept."""
        raw = self.client.hgetall(self._mastery_key(learner_id))
        return {concept: MasteryState.from_dict(json.loads(v)) for concept, v in raw.items()}

    # ==================== Exam History ====================

    def append_exam(self, learner_id: str, summary: ExamSummary):
        """Append an exam summary, keeping the last MAX_EXAM_HISTORY."""
        key = self._exams_key(learner_id)
        pipe = self.client.pipeline()
        pipe.rpush(key, json.dumps(summary.to_dict()))
        pipe.ltrim(key, -MAX_EXAM_HISTORY, -1)
        pipe.execute()

    def get_exams(self, learner_id: str) -> List[ExamSummary]:
        """Get all stored exam summaries, oldest first."""
        raw = self.client.lrange(self._exams_key(learner_id), 0, -1)
        return [ExamSummary.from_dict(json.loads(r)) for r in raw]

    # ==================== Cleanup ====================

    def delete_learner(self, learner_id: str):
        """
        Delete all data for a learner.

        Args:
            learner_id: Learner to delete
        """
        logger.info("Deleting stored history for learner %s", learner_id)
        self.client.delete(
            self._logs_key(learner_id),
            self._mastery_key(learner_id),
            self._exams_key(learner_id)
        )

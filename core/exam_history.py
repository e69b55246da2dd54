"""
Exam History - Per-exam summaries and next-score prediction.

Features:
    - Compact summary of a finished exam (score, weak spots, timing)
    - Weighted moving-average forecast of the next score
"""

from dataclasses import asdict, dataclass, field
from datetime import date as date_type
from typing import Dict, List, Optional, Sequence

MAX_WRONG_TOPICS = 6
TOPIC_SNIPPET_LENGTH = 80


@dataclass
class ExamRecord:
    """One answered exam question."""
    question: str
    is_correct: bool
    difficulty: str  # easy / medium / hard
    time_ms: float


@dataclass
class ExamSummary:
    concept: str
    date: str  # ISO date
    score: int  # 0-100
    total_questions: int
    avg_time_ms: float
    wrong_topics: List[str] = field(default_factory=list)
    difficulty_breakdown: Dict[str, int] = field(default_factory=dict)  # -1 = not asked

    def to_dict(self) -> dict:
        return asdict(self)

    def to_payload(self) -> dict:
        """camelCase form sent to clients and the question-authoring service."""
        return {
            "concept": self.concept,
            "date": self.date,
            "score": self.score,
            "totalQuestions": self.total_questions,
            "avgTimeMs": round(self.avg_time_ms, 1),
            "wrongTopics": self.wrong_topics,
            "difficultyBreakdown": self.difficulty_breakdown,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExamSummary":
        return cls(**data)


@dataclass
class ScorePrediction:
    score: int
    confidence: str  # Medium / High
    reasoning: str


def summarize_exam(concept: str, records: Sequence[ExamRecord],
                   on: Optional[date_type] = None) -> Optional[ExamSummary]:
    """Summarize a finished exam. Returns None for an empty exam."""
    total = len(records)
    if total == 0:
        return None

    def accuracy(tier: str) -> int:
        tiered = [r for r in records if r.difficulty == tier]
        if not tiered:
            return -1
        return round(sum(r.is_correct for r in tiered) / len(tiered) * 100)

    wrong_topics = [
        r.question[:TOPIC_SNIPPET_LENGTH] for r in records if not r.is_correct
    ][:MAX_WRONG_TOPICS]

    return ExamSummary(
        concept=concept.strip().lower(),
        date=(on or date_type.today()).isoformat(),
        score=round(sum(r.is_correct for r in records) / total * 100),
        total_questions=total,
        avg_time_ms=sum(r.time_ms for r in records) / total,
        wrong_topics=wrong_topics,
        difficulty_breakdown={tier: accuracy(tier) for tier in ("easy", "medium", "hard")},
    )


def exams_for(summaries: Sequence[ExamSummary], concept: str) -> List[ExamSummary]:
    """Summaries of one concept, oldest first."""
    key = concept.strip().lower()
    relevant = [s for s in summaries if s.concept == key]
    return sorted(relevant, key=lambda s: s.date)


def prior_exam_summary(summaries: Sequence[ExamSummary], concept: str) -> Optional[ExamSummary]:
    """Most recent summary for a concept, if any."""
    relevant = exams_for(summaries, concept)
    return relevant[-1] if relevant else None


def predict_next_score(summaries: Sequence[ExamSummary], concept: str) -> Optional[ScorePrediction]:
    """
    Forecast the next exam score for a concept.

    One exam: repeat it. Two: 60/40 recent-weighted. Three or more: 50/30/20
    over the last three.
    """
    relevant = exams_for(summaries, concept)
    if not relevant:
        return None

    if len(relevant) == 1:
        prediction = relevant[0].score
        reasoning = "Based on your single previous attempt."
    elif len(relevant) == 2:
        prediction = relevant[1].score * 0.6 + relevant[0].score * 0.4
        trend = relevant[1].score - relevant[0].score
        reasoning = f"Weighted average of 2 exams. Trend: {'improving' if trend >= 0 else 'declining'}."
    else:
        oldest, middle, latest = relevant[-3:]
        prediction = latest.score * 0.5 + middle.score * 0.3 + oldest.score * 0.2
        volatility = abs(latest.score - middle.score)
        reasoning = (f"Analysis of recent performance consistency "
                     f"(volatility: {'low' if volatility < 10 else 'high'}).")

    return ScorePrediction(
        score=min(100, max(0, round(prediction))),
        confidence="High" if len(relevant) > 2 else "Medium",
        reasoning=reasoning,
    )

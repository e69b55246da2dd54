"""
FastAPI Backend for CogniFlow - Adaptive learner modeling.

Endpoints wrap the pure engines in core/:
- /knowledge-graph: Clustered concept graph from answer logs
- /analyze-behavior: Guessing, cheating risk, ability and intervention
- /item-parameters, /next-item: Adaptive testing helpers
- /learners/...: Persisted history through RedisStore
"""

import logging
import random
import sys
from pathlib import Path
from typing import Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.behavioral_analyzer import (
    BehaviorSignals,
    InterventionContext,
    SessionResponse,
    detect_cheating,
    detect_guessing,
    option_entropy,
    should_trigger_intervention,
    wrong_streak,
)
from core.config import CALIBRATION_VERSION, DEFAULT_BEHAVIOR, EXAM_BKT, GALAXY_BKT, settings
from core.exam_history import ExamRecord, predict_next_score, prior_exam_summary, summarize_exam
from core.irt_model import (
    ItemParameters,
    ItemResponse,
    estimate_ability,
    estimate_theta,
    fisher_information,
    select_next_item,
)
from core.knowledge_graph import (
    ConceptEdge,
    ConceptNode,
    KnowledgeGraph,
    SessionLog,
    build_graph,
    normalize_concept,
)
from core.mastery_engine import (
    confidence_score,
    days_between,
    effective_mastery,
    forgetting_decay,
    mastery_label,
    now_ms,
    observe,
    update_mastery,
)
from core.question_items import (
    GeneratedQuestion,
    assign_item_parameters,
    build_question_request,
    difficulty_tier,
)
from redis_store import RedisStore

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("cogniflow.api")

# ==================== Initialize ====================

app = FastAPI(
    title="CogniFlow API",
    description="Adaptive learner modeling - mastery, ability, behavior and concept graphs",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_store: Optional[RedisStore] = None


def get_store() -> RedisStore:
    global _store
    if _store is None:
        _store = RedisStore()
    return _store


def get_rng() -> random.Random:
    return random.Random()


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Reject malformed input with 400 instead of FastAPI's default 422."""
    errors = [
        {"loc": [str(part) for part in err["loc"]], "msg": err["msg"]}
        for err in exc.errors()
    ]
    first = errors[0] if errors else {"loc": [], "msg": "invalid request"}
    message = f"{'.'.join(first['loc'][1:]) or 'body'}: {first['msg']}"
    logger.warning("Rejected %s %s - %s", request.method, request.url.path, message)
    return JSONResponse(status_code=400, content={"error": message, "details": errors})


# ==================== Request/Response Models ====================

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True,
                              str_strip_whitespace=True)


class SessionLogIn(CamelModel):
    concept: str = Field(min_length=1)
    category: str
    is_correct: bool
    response_time_ms: float = Field(ge=0)
    mastery_pl: float = Field(ge=0, le=1, alias="masteryPL")
    timestamp: float


class KnowledgeGraphRequest(CamelModel):
    session_logs: List[SessionLogIn] = Field(min_length=1)


class IRTIn(CamelModel):
    a: float = Field(default=DEFAULT_BEHAVIOR.default_discrimination, gt=0)
    b: float
    c: float = Field(default=DEFAULT_BEHAVIOR.default_guess, ge=0, le=0.5)


class ResponseIn(CamelModel):
    question_id: str
    selected_option: int = Field(ge=0)
    is_correct: bool
    response_time_ms: float = Field(ge=0)
    difficulty: Literal["easy", "medium", "hard"]
    concept: str = "general"
    irt: Optional[IRTIn] = None


class BehaviorSignalsIn(CamelModel):
    tab_switches: int = Field(default=0, ge=0)
    paste_events: int = Field(default=0, ge=0)
    fast_hard_answers: int = Field(default=0, ge=0)
    total_questions: int = Field(default=0, ge=0)


class AnalyzeBehaviorRequest(CamelModel):
    mode: Literal["exam", "practice"] = "practice"
    responses: List[ResponseIn] = Field(default_factory=list,
                                        max_length=settings.max_session_responses)
    behavior_signals: BehaviorSignalsIn
    current_pl: float = Field(default=EXAM_BKT.p_init, gt=0, lt=1, alias="currentPL")
    concept: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    time_remaining_ms: Optional[float] = Field(default=None, ge=0)


class ItemIn(CamelModel):
    id: str
    a: float = Field(gt=0)
    b: float
    c: float = Field(ge=0, le=0.5)

    def to_item(self) -> ItemParameters:
        return ItemParameters(id=self.id, a=self.a, b=self.b, c=self.c)


class AnsweredItemIn(CamelModel):
    item: ItemIn
    correct: bool


class NextItemRequest(CamelModel):
    answered: List[AnsweredItemIn] = Field(default_factory=list)
    bank: List[ItemIn] = Field(min_length=1)
    used_ids: List[str] = Field(default_factory=list)
    prior_theta: float = Field(default=0.0, ge=-4, le=4)


class ItemParametersRequest(CamelModel):
    question_id: str = Field(min_length=1)
    difficulty: float = Field(ge=0, le=1)
    question: GeneratedQuestion


class AnswerIn(CamelModel):
    concept: str = Field(min_length=1)
    category: str = "general"
    is_correct: bool
    response_time_ms: float = Field(ge=0)
    timestamp: Optional[float] = None


class ExamRecordIn(CamelModel):
    question: str
    is_correct: bool
    difficulty: Literal["easy", "medium", "hard"]
    time_ms: float = Field(ge=0)


class ExamIn(CamelModel):
    concept: str = Field(min_length=1)
    records: List[ExamRecordIn] = Field(min_length=1)


class QuestionRequestIn(CamelModel):
    concept: str = Field(min_length=1)
    difficulty: float = Field(ge=0, le=1)
    previous_questions: List[str] = Field(default_factory=list)


# ==================== Helper Functions ====================

def _finite(value: float, digits: int) -> Optional[float]:
    """Round for transport; infinities become null."""
    if value == float("inf") or value != value:
        return None
    return round(value, digits)


def node_to_dict(node: ConceptNode) -> dict:
    return {
        "id": node.id,
        "name": node.name,
        "category": node.category,
        "masteryPL": round(node.mastery, 4),
        "effectiveMastery": round(node.effective_mastery, 4),
        "retentionRate": round(node.retention_rate, 3),
        "daysSinceReview": round(node.days_since_review, 1),
        "cognitiveLoad": round(node.cognitive_load, 3),
        "forgettingRisk": round(node.forgetting_risk, 3),
        "observations": node.observations,
        "community": node.community,
        "degree": node.degree,
        "state": node.state,
        "color": node.color,
        "size": round(node.size, 3),
    }


def edge_to_dict(edge: ConceptEdge) -> dict:
    return {
        "source": edge.source,
        "target": edge.target,
        "weight": round(edge.weight, 3),
        "type": edge.type,
        "prerequisiteStrength": round(edge.prerequisite_strength, 3),
        "coOccurrenceRate": round(edge.co_occurrence_rate, 3),
        "confusionCorrelation": round(edge.confusion_correlation, 3),
    }


def graph_to_dict(kg: KnowledgeGraph) -> dict:
    summary = kg.get_summary()
    return {
        "nodes": [node_to_dict(n) for n in kg.nodes],
        "edges": [edge_to_dict(e) for e in kg.edges],
        "summary": {
            "totalNodes": summary["total_nodes"],
            "totalEdges": summary["total_edges"],
            "communities": summary["communities"],
            "masteredCount": summary["mastered_count"],
            "fadingCount": summary["fading_count"],
            "avgMastery": round(summary["avg_mastery"], 3),
            "modularity": round(summary["modularity"], 4),
        },
    }


def consistency(responses: List[ResponseIn]) -> float:
    """1 minus the share of answers that flipped correctness from the previous one."""
    if len(responses) < 2:
        return 1.0
    flips = sum(
        1 for prev, cur in zip(responses, responses[1:])
        if prev.is_correct != cur.is_correct
    )
    return 1 - flips / (len(responses) - 1)


def analyze_session(request: AnalyzeBehaviorRequest) -> dict:
    """
    Run every engine over one session's responses.

    Theta before each answer is estimated from the earlier answers that
    carry IRT parameters; answers without parameters are left out of the
    ability estimate.
    """
    responses = request.responses

    session: List[SessionResponse] = []
    irt_responses: List[ItemResponse] = []
    for r in responses:
        item = None
        theta = None
        if r.irt is not None:
            item = ItemParameters(id=r.question_id, a=r.irt.a, b=r.irt.b, c=r.irt.c)
            theta = estimate_theta(irt_responses)
        session.append(SessionResponse(
            question_id=r.question_id,
            selected_option=r.selected_option,
            is_correct=r.is_correct,
            response_time_ms=r.response_time_ms,
            difficulty=r.difficulty,
            concept=normalize_concept(r.concept),
            theta=theta,
            item=item,
        ))
        if item is not None:
            irt_responses.append(ItemResponse(item=item, correct=r.is_correct))

    guessing = [detect_guessing(resp, session[:i + 1]) for i, resp in enumerate(session)]
    cheat = detect_cheating(BehaviorSignals(**request.behavior_signals.model_dump()))
    ability = estimate_ability(irt_responses)

    p = request.current_pl
    prev_p = p
    trajectory = []
    for r in responses:
        prev_p = p
        p = update_mastery(p, r.is_correct, EXAM_BKT)
        trajectory.append({"after": r.question_id, "pL": round(p, 4)})

    entropy = option_entropy([r.selected_option for r in responses])
    avg_guess = sum(g.probability for g in guessing) / len(guessing) if guessing else 0.0

    if responses:
        accuracy = sum(r.is_correct for r in responses) / len(responses)
        mean_time = sum(r.response_time_ms for r in responses) / len(responses)
        confidence = confidence_score(
            accuracy=accuracy,
            normalized_response_time=mean_time / 60_000,
            consistency=consistency(responses),
            guess_probability=avg_guess,
        )
    else:
        confidence = 0.5

    intervention = None
    if responses:
        last = responses[-1]
        concept = normalize_concept(request.concept or last.concept)
        decision = should_trigger_intervention(InterventionContext(
            mode=request.mode,
            is_correct=last.is_correct,
            current_p=p,
            prev_p=prev_p,
            wrong_streak=wrong_streak(session, concept),
            guess_probability=avg_guess,
            confidence=request.confidence if request.confidence is not None else confidence,
            time_remaining_ms=request.time_remaining_ms,
        ))
        intervention = {
            "trigger": decision.trigger,
            "reasons": decision.reasons,
            "priority": decision.priority,
            "score": decision.score,
        }

    return {
        "guessingPerResponse": [
            {
                "questionId": r.question_id,
                "probability": round(g.probability, 3),
                "flags": {
                    "speed": g.speed_flag,
                    "pattern": g.pattern_flag,
                    "mismatch": g.mismatch_flag,
                },
                "reasons": g.reasons,
            }
            for r, g in zip(responses, guessing)
        ],
        "sessionSummary": {
            "theta": round(ability.theta, 3),
            "abilityScore": ability.score,
            "standardError": _finite(ability.standard_error, 3),
            "itemsWithParameters": ability.n_items,
            "finalMasteryPL": round(p, 4),
            "masteryLabel": mastery_label(p),
            "avgGuessProbability": round(avg_guess, 3),
            "optionEntropy": round(entropy, 3),
            "confidenceScore": round(confidence, 3),
            "masteryTrajectory": trajectory,
        },
        "cheatRisk": {
            "score": round(cheat.score, 3),
            "flagged": cheat.flagged,
            "breakdown": {
                "tab": round(cheat.breakdown["tab"], 3),
                "paste": round(cheat.breakdown["paste"], 3),
                "fastHard": round(cheat.breakdown["fast_hard"], 3),
            },
        },
        "intervention": intervention,
    }


# ==================== Health ====================

@app.get("/health")
def health():
    return {"status": "ok", "calibration": CALIBRATION_VERSION}


# ==================== Engine Endpoints ====================

@app.post("/knowledge-graph")
def knowledge_graph_endpoint(request: KnowledgeGraphRequest):
    """Build the clustered concept graph from the supplied logs."""
    logs = [SessionLog(**log.model_dump()) for log in request.session_logs]
    kg = build_graph(logs)
    logger.info("Knowledge graph: %d logs -> %d nodes, %d edges",
                len(logs), len(kg.nodes), len(kg.edges))
    return graph_to_dict(kg)


@app.post("/analyze-behavior")
def analyze_behavior_endpoint(request: AnalyzeBehaviorRequest):
    """Guessing per response, cheating risk, ability and an intervention decision."""
    result = analyze_session(request)
    logger.info("Behavior analysis: %d responses, mode=%s, cheat=%.2f",
                len(request.responses), request.mode, result["cheatRisk"]["score"])
    return result


@app.post("/item-parameters")
def item_parameters_endpoint(request: ItemParametersRequest,
                             rng: random.Random = Depends(get_rng)):
    """Attach 3PL parameters to a validated generated question."""
    item = assign_item_parameters(request.question_id, request.difficulty, rng)
    return {
        "questionId": item.id,
        "question": request.question.model_dump(by_alias=True),
        "difficultyTier": difficulty_tier(request.difficulty),
        "irt": {"a": round(item.a, 3), "b": round(item.b, 3), "c": item.c},
    }


@app.post("/next-item")
def next_item_endpoint(request: NextItemRequest):
    """Current ability and the most informative unused item."""
    answered = [ItemResponse(item=a.item.to_item(), correct=a.correct) for a in request.answered]
    ability = estimate_ability(answered, request.prior_theta)
    used = set(request.used_ids) | {r.item.id for r in answered}

    item = select_next_item(ability.theta, [i.to_item() for i in request.bank], used)
    return {
        "theta": round(ability.theta, 3),
        "abilityScore": ability.score,
        "standardError": _finite(ability.standard_error, 3),
        "item": None if item is None else {"id": item.id, "a": item.a, "b": item.b, "c": item.c},
        "information": None if item is None else round(
            fisher_information(ability.theta, item.a, item.b, item.c), 4),
    }


# ==================== Learner Endpoints ====================

@app.post("/learners/{learner_id}/answers")
def record_answer_endpoint(learner_id: str, answer: AnswerIn,
                           store: RedisStore = Depends(get_store)):
    """Apply one answer to the stored mastery state and append it to the log."""
    at = answer.timestamp if answer.timestamp is not None else now_ms()

    previous, state = store.apply_answer(
        learner_id,
        answer.concept,
        update=lambda stored: observe(stored, answer.is_correct, at, GALAXY_BKT),
        to_log=lambda updated: SessionLog(
            concept=answer.concept,
            category=answer.category,
            is_correct=answer.is_correct,
            response_time_ms=answer.response_time_ms,
            mastery_pl=updated.p_mastered,
            timestamp=at,
        ),
    )

    return {
        "concept": normalize_concept(answer.concept),
        "previousPL": None if previous is None else round(previous.p_mastered, 4),
        "masteryPL": round(state.p_mastered, 4),
        "stability": round(state.stability, 3),
        "reviewCount": state.review_count,
        "masteryLabel": mastery_label(state.p_mastered),
    }


@app.get("/learners/{learner_id}/mastery")
def get_mastery_endpoint(learner_id: str, store: RedisStore = Depends(get_store)):
    """Stored mastery with current retention for every observed concept."""
    current = now_ms()
    concepts: Dict[str, dict] = {}
    for concept, state in store.get_all_mastery(learner_id).items():
        days = days_between(state.last_review_at, current)
        concepts[concept] = {
            "masteryPL": round(state.p_mastered, 4),
            "retention": round(forgetting_decay(state, days), 3),
            "effectiveMastery": round(effective_mastery(state, days), 4),
            "stability": round(state.stability, 3),
            "reviewCount": state.review_count,
            "daysSinceReview": round(days, 1),
        }
    return {"learnerId": learner_id, "concepts": concepts}


def _stored_graph(learner_id: str, store: RedisStore) -> KnowledgeGraph:
    logs = store.get_logs(learner_id, limit=settings.max_log_window)
    if not logs:
        raise HTTPException(status_code=404, detail="No answer history for learner")
    return build_graph(logs)


@app.get("/learners/{learner_id}/knowledge-graph")
def learner_graph_endpoint(learner_id: str, store: RedisStore = Depends(get_store)):
    """Concept graph over the learner's most recent stored answers."""
    return graph_to_dict(_stored_graph(learner_id, store))


@app.get("/learners/{learner_id}/learning-path/{concept}")
def learning_path_endpoint(learner_id: str, concept: str, threshold: float = 0.6,
                           store: RedisStore = Depends(get_store)):
    """Root cause and ordered study path for a struggling concept."""
    kg = _stored_graph(learner_id, store)
    return {
        "concept": normalize_concept(concept),
        "rootCause": kg.trace_root_cause(concept, threshold),
        "path": kg.get_learning_path(concept, threshold),
    }


@app.post("/learners/{learner_id}/exams")
def record_exam_endpoint(learner_id: str, exam: ExamIn,
                         store: RedisStore = Depends(get_store)):
    """Summarize a finished exam and keep it in the learner's history."""
    summary = summarize_exam(exam.concept, [ExamRecord(**r.model_dump()) for r in exam.records])
    store.append_exam(learner_id, summary)
    return summary.to_payload()


@app.post("/learners/{learner_id}/question-request")
def question_request_endpoint(learner_id: str, body: QuestionRequestIn,
                              store: RedisStore = Depends(get_store)):
    """Payload for the question-authoring service, primed with the last exam."""
    prior = prior_exam_summary(store.get_exams(learner_id), body.concept)
    request = build_question_request(body.concept, body.difficulty,
                                     body.previous_questions, prior)
    return request.model_dump(by_alias=True)


@app.get("/learners/{learner_id}/exams/{concept}/prediction")
def predict_score_endpoint(learner_id: str, concept: str,
                           store: RedisStore = Depends(get_store)):
    """Forecast the next exam score for a concept."""
    prediction = predict_next_score(store.get_exams(learner_id), concept)
    if prediction is None:
        raise HTTPException(status_code=404, detail="No exams recorded for concept")
    return {
        "concept": normalize_concept(concept),
        "score": prediction.score,
        "confidence": prediction.confidence,
        "reasoning": prediction.reasoning,
    }


# ==================== Run Server ====================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

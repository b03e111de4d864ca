from __future__ import annotations
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import logging, os, uuid, typing as t
from collections import OrderedDict

# ---- Engine imports ----
from quiz_core.anticheat import AntiCheatMonitor
from quiz_core.backend import SheetBackend
from quiz_core.composer import Batch, ExamComposer, Personalized, publish_variants
from quiz_core.config import DEFAULT_GRADE, MAX_COMPOSERS, MAX_FINISHED_ATTEMPTS, backend_url, load_config, seed_rng
from quiz_core.engine import AttemptEngine
from quiz_core.errors import AttemptStateError, BackendError, CapacityError, PoolShrinkageError, TransientNetworkError
from quiz_core.progress import current_level, is_level_unlocked, merge_progress, parse_progress, record_outcome
from quiz_core.question_bank import QuestionPool, load_bank
from quiz_core.scheduler import AttemptScheduler
from quiz_core.types import AttemptContext, Question, SessionHandle, SubmissionReason
from .storage import LocalExamStore, leaderboard, load_progress, record_result, results_for_user, save_progress

log = logging.getLogger(__name__)

CFG = load_config()
_URL = backend_url(CFG)
BACKEND: SheetBackend | None = SheetBackend(_URL) if _URL else None
PUBLISHER: t.Any = BACKEND or LocalExamStore()
POOL: QuestionPool = load_bank()

COMPOSERS: "OrderedDict[str, ExamComposer]" = OrderedDict()
ATTEMPTS: dict[str, AttemptEngine] = {}
MONITORS: dict[str, AntiCheatMonitor] = {}
# completed attempts, oldest first; results already recorded
_FINISHED: "OrderedDict[str, None]" = OrderedDict()

app = FastAPI(title="Quiz Integrity API")

ALLOWED_ORIGINS = [o for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)


@app.exception_handler(TransientNetworkError)
async def _backend_unreachable(request: Request, exc: TransientNetworkError):
    log.warning("backend unreachable on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": f"backend unavailable: {exc}"})


@app.exception_handler(BackendError)
async def _backend_refused(request: Request, exc: BackendError):
    log.warning("backend error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": f"backend error: {exc}"})


@app.get("/")
def root():
    return {"status": "ok", "service": "quiz-integrity-api"}


@app.get("/health")
def health():
    return {
        "backend": "sheet" if BACKEND else "local",
        "bank_size": len(POOL),
        "attempts_active": sum(1 for e in ATTEMPTS.values() if e.in_progress),
    }

# ---- Schemas ----
class SessionIn(BaseModel):
    user_id: str
    token: str
    device_id: str = ""
    role: str = "student"

class ComposerReq(BaseModel):
    grade: int = DEFAULT_GRADE

class RequirementReq(BaseModel):
    topic: str
    level: str
    count: int

class GenerateReq(BaseModel):
    mode: str = "batch"        # "batch" | "personalized"
    count: int = 4
    recipients: list[str] = []
    publish: bool = True
    strict: bool | None = None

class StartAttemptReq(BaseModel):
    exam_id: str | None = None
    grade: int = DEFAULT_GRADE
    topic: str = ""
    level: int = 1
    difficulty: str | None = None
    session: SessionIn | None = None

class AnswerReq(BaseModel):
    value: str | None
    index: int | None = None

class TrueFalseReq(BaseModel):
    subpart: str
    mark: str
    index: int | None = None

class VisibilityReq(BaseModel):
    hidden: bool

class FinishReq(BaseModel):
    reason: str = "normal"

# ---- Helpers ----
def _serialize_question(q: Question | None, *, reveal: bool = False) -> dict[str, t.Any] | None:
    if q is None: return None
    out: dict[str, t.Any] = {
        "id": q.id,
        "type": q.type.value,
        "grade": q.grade,
        "topic": q.topic,
        "level": q.level.value,
        "text": q.text,
        "options": list(q.options),
    }
    if reveal:
        out["answer_key"] = q.answer_key
        out["solution"] = q.solution
    return out


def _serialize_attempt(aid: str, eng: AttemptEngine) -> dict[str, t.Any]:
    res = eng.result
    return {
        "attempt_id": aid,
        "state": eng.state.value,
        "index": eng.current_index,
        "total": len(eng.questions),
        "elapsed": eng.elapsed,
        "tab_switch_count": eng.tab_switch_count,
        "reason": eng.reason.value,
        "answers": eng.wire_answers(),
        "question": _serialize_question(eng.current_question, reveal=eng.is_complete),
        "result": res.to_dict() if res else None,
    }


def _composer(cid: str) -> ExamComposer:
    comp = COMPOSERS.get(cid)
    if not comp: raise HTTPException(404, "composer not found")
    return comp


def _attempt(aid: str) -> AttemptEngine:
    eng = ATTEMPTS.get(aid)
    if not eng: raise HTTPException(404, "attempt not found")
    return eng


def _guard(fn: t.Callable[[], t.Any]) -> t.Any:
    try:
        return fn()
    except AttemptStateError as e:
        raise HTTPException(409, str(e))
    except (ValueError, IndexError) as e:
        raise HTTPException(422, str(e))

# ---- Question bank ----
@app.get("/bank/topics")
def bank_topics(grade: int = Query(DEFAULT_GRADE)):
    return {"grade": grade, "topics": POOL.topics(grade)}


@app.get("/bank/count")
def bank_count(grade: int = Query(DEFAULT_GRADE), topic: str | None = None, level: str | None = None):
    try:
        return {"count": POOL.count(grade, topic, level)}
    except ValueError as e:
        raise HTTPException(422, str(e))


@app.post("/bank/reload")
async def bank_reload():
    global POOL
    if BACKEND is None:
        POOL = load_bank()
    else:
        POOL = await BACKEND.fetch_pool()
        for comp in COMPOSERS.values():
            comp.pool = POOL
    return {"bank_size": len(POOL)}

# ---- Exam composer ----
@app.post("/composer")
def create_composer(req: ComposerReq | None = None):
    req = req or ComposerReq()
    cid = str(uuid.uuid4())
    COMPOSERS[cid] = ExamComposer(POOL, req.grade, rng=seed_rng(CFG))
    while len(COMPOSERS) > MAX_COMPOSERS:
        COMPOSERS.popitem(last=False)
    return {"composer_id": cid, "grade": req.grade}


@app.get("/composer/{cid}")
def get_composer(cid: str):
    comp = _composer(cid)
    return {
        "composer_id": cid,
        "grade": comp.grade,
        "total": comp.total_questions,
        "requirements": [
            {"id": r.id, "topic": r.topic, "level": r.level.value, "count": r.count}
            for r in comp.requirements
        ],
    }


@app.post("/composer/{cid}/requirements")
def add_requirement(cid: str, req: RequirementReq):
    comp = _composer(cid)
    try:
        total = comp.add_requirement(req.topic, req.level, req.count)
    except CapacityError as e:
        raise HTTPException(409, str(e))
    return {"requirement_id": comp.requirements[-1].id, "total": total}


@app.delete("/composer/{cid}/requirements/{rid}")
def remove_requirement(cid: str, rid: str):
    comp = _composer(cid)
    if not comp.remove_requirement(rid):
        raise HTTPException(404, "requirement not found")
    return {"ok": True, "total": comp.total_questions}


@app.post("/composer/{cid}/generate")
async def generate(cid: str, req: GenerateReq):
    comp = _composer(cid)
    if req.mode == "batch":
        mode: Batch | Personalized = Batch(req.count)
    elif req.mode == "personalized":
        names = list(req.recipients)
        if not names and BACKEND is not None:
            names = [str(s.get("name") or s.get("email")) for s in await BACKEND.fetch_students()]
        if not names:
            raise HTTPException(422, "personalized mode needs recipients")
        mode = Personalized(names)
    else:
        raise HTTPException(422, f"unknown mode: {req.mode}")

    try:
        strict = req.strict if req.strict is not None else CFG.get("COMPOSER_STRICT")
        variants = comp.generate(mode, strict=strict)
    except CapacityError as e:
        raise HTTPException(409, str(e))
    except PoolShrinkageError as e:
        raise HTTPException(409, str(e))
    except ValueError as e:
        raise HTTPException(422, str(e))

    exam_ids: list[str | None] = [None] * len(variants)
    if req.publish:
        exam_ids = await publish_variants(variants, PUBLISHER, comp.grade)
    return {
        "variants": [
            {
                "label": v.label,
                "count": len(v.questions),
                "expected": v.expected,
                "question_ids": [q.id for q in v.questions],
                "shortfalls": [
                    {"requirement_id": s.requirement_id, "topic": s.topic, "level": s.level.value,
                     "requested": s.requested, "delivered": s.delivered}
                    for s in v.shortfalls
                ],
                "exam_id": exam_id,
            }
            for v, exam_id in zip(variants, exam_ids)
        ]
    }

# ---- Published exams ----
@app.get("/exams/{exam_id}")
async def get_exam(exam_id: str):
    exam = await PUBLISHER.fetch_exam(exam_id)
    if not exam:
        raise HTTPException(404, "exam not found")
    return {
        "exam_id": exam_id,
        "title": exam["title"],
        "grade": exam["grade"],
        "questions": [_serialize_question(q) for q in exam["questions"]],
    }

# ---- Attempts ----
@app.post("/attempts")
async def start_attempt(req: StartAttemptReq):
    _sweep_finished()
    session = SessionHandle(**req.session.model_dump()) if req.session else None
    if req.exam_id:
        exam = await PUBLISHER.fetch_exam(req.exam_id)
        if not exam:
            raise HTTPException(404, "exam not found")
        questions = exam["questions"]
        ctx = AttemptContext(topic=exam["title"], grade=exam["grade"], level=1, exam_id=req.exam_id)
    else:
        if not req.topic:
            raise HTTPException(422, "topic or exam_id is required")
        await _check_unlocked(session, req.grade, req.topic, req.level)
        if BACKEND is not None:
            questions = await BACKEND.fetch_questions(req.grade, req.topic, req.level)
        else:
            try:
                questions = POOL.query(req.grade, req.topic, req.difficulty)
            except ValueError as e:
                raise HTTPException(422, str(e))
        ctx = AttemptContext(topic=req.topic, grade=req.grade, level=req.level)
    if not questions:
        raise HTTPException(404, "no questions for this selection")

    eng = AttemptEngine(session=session, submitter=BACKEND, context=ctx, scheduler=AttemptScheduler())
    eng.start(questions)
    monitor = AntiCheatMonitor(eng, session, validator=BACKEND, reporter=BACKEND)
    monitor.start()

    aid = str(uuid.uuid4())
    ATTEMPTS[aid] = eng
    MONITORS[aid] = monitor
    return _serialize_attempt(aid, eng)


@app.get("/attempts/{aid}")
async def get_attempt(aid: str):
    eng = _attempt(aid)
    if eng.is_complete:
        _remember(aid, eng)
    return _serialize_attempt(aid, eng)


@app.post("/attempts/{aid}/answer")
async def answer(aid: str, req: AnswerReq):
    eng = _attempt(aid)
    idx = eng.current_index if req.index is None else req.index
    accepted = _guard(lambda: eng.select_answer(idx, req.value))
    return {"accepted": accepted, **_serialize_attempt(aid, eng)}


@app.post("/attempts/{aid}/true-false")
async def true_false(aid: str, req: TrueFalseReq):
    eng = _attempt(aid)
    idx = eng.current_index if req.index is None else req.index
    accepted = _guard(lambda: eng.update_true_false_part(idx, req.subpart, req.mark))
    return {"accepted": accepted, **_serialize_attempt(aid, eng)}


@app.post("/attempts/{aid}/next")
async def next_question(aid: str):
    eng = _attempt(aid)
    _guard(eng.next)
    return _serialize_attempt(aid, eng)


@app.post("/attempts/{aid}/previous")
async def previous_question(aid: str):
    eng = _attempt(aid)
    _guard(eng.previous)
    return _serialize_attempt(aid, eng)


@app.post("/attempts/{aid}/visibility")
async def visibility(aid: str, req: VisibilityReq):
    eng = _attempt(aid)
    ended = await MONITORS[aid].on_visibility_change(req.hidden)
    if ended:
        _remember(aid, eng)
    return {"ended": ended, **_serialize_attempt(aid, eng)}


@app.post("/attempts/{aid}/heartbeat")
async def heartbeat(aid: str):
    eng = _attempt(aid)
    status = await MONITORS[aid].poll_once()
    if eng.is_complete:
        _remember(aid, eng)
    return {"status": status.value, **_serialize_attempt(aid, eng)}


@app.post("/attempts/{aid}/finish")
async def finish(aid: str, req: FinishReq | None = None):
    eng = _attempt(aid)
    req = req or FinishReq()
    try:
        reason = SubmissionReason(req.reason)
    except ValueError:
        raise HTTPException(422, f"unknown reason: {req.reason}")
    try:
        await eng.finish(reason)
    except AttemptStateError as e:
        raise HTTPException(409, str(e))
    _remember(aid, eng)
    return _serialize_attempt(aid, eng)


def _remember(aid: str, eng: AttemptEngine) -> None:
    """Record a completed attempt once: result history, level progress, registry cap."""
    if eng.result is None or aid in _FINISHED:
        return
    _FINISHED[aid] = None
    if eng.session is not None:
        ctx = eng.context
        entry = eng.result.to_dict()
        entry.update({"topic": ctx.topic, "grade": ctx.grade, "level": ctx.level})
        record_result(eng.session.user_id, entry)
        if not ctx.exam_id:
            before = load_progress(eng.session.user_id)
            after = record_outcome(before, ctx.grade, ctx.topic, ctx.level, eng.result, trust_local=BACKEND is None)
            if after != before:
                save_progress(eng.session.user_id, after)
    while len(_FINISHED) > MAX_FINISHED_ATTEMPTS:
        old, _ = _FINISHED.popitem(last=False)
        ATTEMPTS.pop(old, None)
        MONITORS.pop(old, None)


def _sweep_finished() -> None:
    # attempts ended by the tick or heartbeat jobs never passed through an endpoint
    for aid, eng in list(ATTEMPTS.items()):
        if eng.is_complete:
            _remember(aid, eng)


async def _progress_for(user_id: str) -> dict[str, int]:
    local = load_progress(user_id)
    if BACKEND is None:
        return local
    remote = await BACKEND.fetch_user_progress(user_id)
    return merge_progress(local, parse_progress((remote or {}).get("progress")))


async def _check_unlocked(session: SessionHandle | None, grade: int, topic: str, level: int) -> None:
    if session is not None and session.is_teacher:
        return
    progress = await _progress_for(session.user_id) if session else {}
    if not is_level_unlocked(progress, grade, topic, level):
        unlocked = current_level(progress, grade, topic)
        raise HTTPException(403, f"level {level} of {topic} is locked (unlocked up to {unlocked})")


@app.get("/users/{user_id}/results")
def list_results(user_id: str):
    return {"results": results_for_user(user_id)}


@app.get("/users/{user_id}/progress")
async def user_progress(user_id: str, grade: int | None = None, topic: str | None = None):
    progress = await _progress_for(user_id)
    out: dict[str, t.Any] = {"user_id": user_id, "progress": progress}
    if grade is not None and topic:
        out["current_level"] = current_level(progress, grade, topic)
    return out


@app.get("/leaderboard")
async def get_leaderboard(limit: int = Query(20, ge=1, le=200)):
    rows = await BACKEND.fetch_leaderboard(limit) if BACKEND else leaderboard(limit)
    return {"leaderboard": rows}


@app.get("/theory")
async def get_theory(grade: int = Query(DEFAULT_GRADE), topic: str = Query(...), level: int = Query(1)):
    theory = await BACKEND.fetch_theory(grade, topic, level) if BACKEND else None
    if not theory:
        raise HTTPException(404, "no theory for this selection")
    return {"grade": grade, "topic": topic, "level": level, "theory": theory}

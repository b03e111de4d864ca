from __future__ import annotations
import argparse, asyncio, logging
from quiz_core.answers import MARK_FALSE, MARK_TRUE
from quiz_core.engine import AttemptEngine
from quiz_core.question_bank import load_bank
from quiz_core.types import AttemptContext, OPTION_LETTERS, QuestionType
def ask(prompt: str, allowed=None) -> str:
    while True:
        v = input(prompt + " ").strip()
        if allowed is None or v.upper() in allowed: return v if allowed is None else v.upper()
        print(f"Enter one of: {', '.join(allowed)}")
def answer_current(engine: AttemptEngine) -> None:
    q = engine.current_question; idx = engine.current_index
    print(f"\nCâu {idx + 1}/{len(engine.questions)} [{q.type.value}] {q.text}")
    if q.type is QuestionType.MULTIPLE_CHOICE:
        for ch, opt in zip(OPTION_LETTERS, q.options): print(f"  {ch}. {opt}")
        letters = OPTION_LETTERS[:len(q.options)] or OPTION_LETTERS
        engine.select_answer(idx, ask(f"Your choice ({letters[0]}-{letters[-1]}):", letters))
    elif q.type is QuestionType.TRUE_FALSE:
        for ch, opt in zip(OPTION_LETTERS, q.options):
            mark = ask(f"  {ch}) {opt}  [{MARK_TRUE}/{MARK_FALSE}]:", (MARK_TRUE, MARK_FALSE))
            engine.update_true_false_part(idx, ch, mark)
    else:
        engine.select_answer(idx, input("Your answer: "))
async def run(grade: int, topic: str) -> None:
    pool = load_bank()
    questions = pool.query(grade=grade, topic=topic)
    if not questions:
        print(f"No questions for grade {grade} / {topic}. Topics: {', '.join(pool.topics(grade))}"); return
    engine = AttemptEngine(context=AttemptContext(topic=topic, grade=grade))
    engine.start(questions)
    while True:
        answer_current(engine)
        if engine.current_index == len(engine.questions) - 1: break
        engine.next()
    res = await engine.finish()
    print(f"\nDone. Score {res.score}/{res.total} ({res.percentage}%) - {'passed' if res.passed else 'not passed'}")
    for q, ok in zip(engine.questions, res.correctness):
        if not ok: print(f"  {q.id}: key {q.answer_key} - {q.solution}")
def main():
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    ap = argparse.ArgumentParser(description="Run one quiz attempt over the bundled bank")
    ap.add_argument("--grade", type=int, default=12)
    ap.add_argument("--topic", required=True)
    args = ap.parse_args()
    asyncio.run(run(args.grade, args.topic))
if __name__ == "__main__": main()

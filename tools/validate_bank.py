from __future__ import annotations
from collections import defaultdict
import argparse, json, os
from quiz_core.question_bank import LEVELS, QuestionPool, load_bank

# Minimum questions per (grade, topic, level) bucket before a batch of exams stays varied
TARGET_PER_BUCKET = int(os.getenv("TARGET_PER_BUCKET", 4))


def coverage(pool: QuestionPool) -> dict[int, dict[str, dict[str, int]]]:
    out: dict[int, dict[str, dict[str, int]]] = defaultdict(lambda: defaultdict(dict))
    for q in pool.snapshot():
        bucket = out[q.grade][q.topic]
        bucket[q.level.value] = bucket.get(q.level.value, 0) + 1
    return out


def main():
    ap = argparse.ArgumentParser(description="Report question counts per grade / topic / level")
    ap.add_argument("--file", help="bank JSON to audit instead of the bundled one")
    args = ap.parse_args()

    if args.file:
        with open(args.file, "r", encoding="utf-8") as f:
            pool = QuestionPool.from_records(json.load(f))
    else:
        pool = load_bank()

    print(f"{len(pool)} questions; target ≥{TARGET_PER_BUCKET} per bucket.\n")
    for grade, topics in sorted(coverage(pool).items()):
        print(f"Grade {grade}")
        for topic, levels in sorted(topics.items()):
            print(f"  {topic}")
            short = []
            for lvl in LEVELS:
                n = levels.get(lvl.value, 0)
                print(f"    {lvl.value:<14} {n:3d}")
                if 0 < n < TARGET_PER_BUCKET:
                    short.append(f"{lvl.value} +{TARGET_PER_BUCKET - n}")
            if short:
                print(f"    → Add: {', '.join(short)}")
            else:
                print("    ✓ Meets targets")
        print()


if __name__ == "__main__":
    main()

from __future__ import annotations

import random

import pytest

from quiz_core.composer import Batch, ExamComposer, Personalized, publish_variants
from quiz_core.errors import CapacityError, PoolShrinkageError
from quiz_core.types import Level

from tests.conftest import FakeBackend, build_synthetic_pool


def _composer(pool, grade=12, seed=7):
    return ExamComposer(pool, grade, rng=random.Random(seed))


def test_batch_variants_use_whole_pool_without_duplicates():
    pool = build_synthetic_pool(topics=["Hàm số"], per_level=10, levels=(Level.RECALL,))
    comp = _composer(pool)
    assert comp.add_requirement("Hàm số", Level.RECALL, 10) == 10

    variants = comp.generate(Batch(3))
    assert [v.label for v in variants] == ["Đề 101", "Đề 102", "Đề 103"]
    for v in variants:
        ids = [q.id for q in v.questions]
        assert len(ids) == 10
        assert len(set(ids)) == 10, "a variant must not repeat a question"
        assert v.complete


def test_variants_follow_structure_counts():
    pool = build_synthetic_pool()
    comp = _composer(pool)
    comp.add_requirement("Hàm số", "Nhận biết", 3)
    comp.add_requirement("Logarit", Level.APPLICATION, 2)
    (variant,) = comp.generate(Batch(1))
    by_key = {}
    for q in variant.questions:
        by_key[(q.topic, q.level)] = by_key.get((q.topic, q.level), 0) + 1
    assert by_key == {("Hàm số", Level.RECALL): 3, ("Logarit", Level.APPLICATION): 2}


def test_final_order_is_shuffled_across_requirements():
    pool = build_synthetic_pool(per_level=6)
    comp = _composer(pool, seed=3)
    comp.add_requirement("Hàm số", Level.RECALL, 6)
    comp.add_requirement("Logarit", Level.RECALL, 6)
    orders = {tuple(q.topic for q in v.questions) for v in comp.generate(Batch(5))}
    blocked = ("Hàm số",) * 6 + ("Logarit",) * 6
    assert orders != {blocked}


def test_capacity_error_leaves_structure_untouched():
    pool = build_synthetic_pool(per_level=4)
    comp = _composer(pool)
    comp.add_requirement("Hàm số", Level.RECALL, 2)
    before = comp.requirements

    with pytest.raises(CapacityError):
        comp.add_requirement("Hàm số", Level.COMPREHENSION, 5)
    with pytest.raises(CapacityError):
        comp.add_requirement("Hàm số", Level.RECALL, 0)
    with pytest.raises(CapacityError):
        comp.add_requirement("", Level.RECALL, 1)
    with pytest.raises(CapacityError):
        comp.add_requirement("Hình học", Level.RECALL, 1)
    with pytest.raises(CapacityError):
        comp.add_requirement("Hàm số", "Khó", 1)

    assert comp.requirements == before
    assert comp.total_questions == 2


def test_capacity_counts_what_earlier_rows_reserved():
    pool = build_synthetic_pool(per_level=4)
    comp = _composer(pool)
    comp.add_requirement("Hàm số", Level.RECALL, 3)
    with pytest.raises(CapacityError):
        comp.add_requirement("Hàm số", Level.RECALL, 2)
    assert comp.add_requirement("Hàm số", Level.RECALL, 1) == 4
    (variant,) = comp.generate(Batch(1))
    assert len({q.id for q in variant.questions}) == 4


def test_remove_requirement_and_grade_change():
    comp = _composer(build_synthetic_pool())
    comp.add_requirement("Hàm số", Level.RECALL, 2)
    rid = comp.requirements[0].id
    assert comp.remove_requirement("missing") is False
    assert comp.remove_requirement(rid) is True
    assert comp.total_questions == 0

    comp.add_requirement("Hàm số", Level.RECALL, 2)
    comp.set_grade(11)
    assert comp.requirements == []
    with pytest.raises(CapacityError):
        comp.add_requirement("Hàm số", Level.RECALL, 1)


def test_generate_requires_structure():
    comp = _composer(build_synthetic_pool())
    with pytest.raises(CapacityError):
        comp.generate(Batch(1))


def test_pool_shrinkage_is_reported_not_padded():
    pool = build_synthetic_pool(per_level=4)
    comp = _composer(pool)
    comp.add_requirement("Hàm số", Level.RECALL, 4)
    comp.add_requirement("Logarit", Level.RECALL, 2)
    pool.remove("Hàm số_RECALL_0")
    pool.remove("Hàm số_RECALL_1")

    variants = comp.generate(Batch(2))
    for v in variants:
        assert len(v.questions) == 4
        assert v.expected == 6
        assert not v.complete
        (gap,) = v.shortfalls
        assert (gap.topic, gap.requested, gap.delivered) == ("Hàm số", 4, 2)
        assert len({q.id for q in v.questions}) == 4

    with pytest.raises(PoolShrinkageError) as exc:
        comp.generate(Batch(1), strict=True)
    assert exc.value.shortfalls[0].delivered == 2


def test_personalized_mode_labels_each_recipient():
    comp = _composer(build_synthetic_pool())
    comp.add_requirement("Logarit", Level.HIGH_APPLICATION, 3)
    variants = comp.generate(Personalized(["Nguyễn Văn A", "Trần Thị B"]))
    assert [v.label for v in variants] == ["Đề của: Nguyễn Văn A", "Đề của: Trần Thị B"]
    assert all(len(v.questions) == 3 for v in variants)


def test_generate_draws_from_snapshot_of_configured_grade():
    pool = build_synthetic_pool(grade=12, per_level=2)
    for q in build_synthetic_pool(grade=10, per_level=2).snapshot():
        pool.add(type(q)(**{**q.__dict__, "id": "g10_" + q.id}))
    comp = _composer(pool)
    comp.add_requirement("Hàm số", Level.RECALL, 2)
    (variant,) = comp.generate(Batch(1))
    assert all(q.grade == 12 for q in variant.questions)


@pytest.mark.asyncio
async def test_publish_variants_keeps_one_slot_per_variant():
    comp = _composer(build_synthetic_pool())
    comp.add_requirement("Hàm số", Level.RECALL, 1)
    variants = comp.generate(Personalized(["An", "Bình reject"]))
    backend = FakeBackend()
    exam_ids = await publish_variants(variants, backend, comp.grade)
    assert exam_ids == ["E_1", None]
    assert len(backend.published) == 2
    assert backend.published[0][1] == 12


@pytest.mark.asyncio
async def test_publish_same_named_recipients_get_distinct_exams():
    comp = _composer(build_synthetic_pool())
    comp.add_requirement("Hàm số", Level.RECALL, 2)
    variants = comp.generate(Personalized(["An", "An"]))
    assert [v.label for v in variants] == ["Đề của: An", "Đề của: An"]
    exam_ids = await publish_variants(variants, FakeBackend(), comp.grade)
    assert exam_ids == ["E_1", "E_2"]

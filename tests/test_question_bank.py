from __future__ import annotations

from quiz_core.question_bank import load_bank, load_records


def test_bundled_bank_loads_from_the_data_dir_beside_the_module():
    records = load_records()
    pool = load_bank()
    assert len(records) == 16
    assert pool.count() == len(records)
    assert "Ứng dụng đạo hàm" in pool.topics()

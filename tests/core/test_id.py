import time

import pytest

from moltcore.core.id import Identifier


def test_ascending_ids_sort_in_creation_order() -> None:
    ids = [Identifier.ascending("message") for _ in range(50)]
    assert ids == sorted(ids)
    assert all(i.startswith("msg_") for i in ids)
    assert len(set(ids)) == 50


def test_descending_ids_sort_newest_first() -> None:
    ids = [Identifier.descending("session") for _ in range(50)]
    assert ids == sorted(ids, reverse=True)
    assert all(i.startswith("ses_") for i in ids)


def test_given_id_is_checked_against_prefix() -> None:
    assert Identifier.ascending("permission", "per_custom") == "per_custom"
    with pytest.raises(ValueError):
        Identifier.ascending("permission", "msg_custom")


def test_timestamp_reads_back_creation_time() -> None:
    before = int(time.time() * 1000)
    value = Identifier.ascending("part")
    after = int(time.time() * 1000)

    assert before <= Identifier.timestamp(value) <= after
    with pytest.raises(ValueError):
        Identifier.timestamp("garbage")

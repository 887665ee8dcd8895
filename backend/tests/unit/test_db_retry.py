from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from tutorbook.database import with_db_retry


def _locked() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("database is locked"))


@patch("tutorbook.database.time.sleep")
def test_retries_transient_errors_then_returns(sleep):
    func = MagicMock(side_effect=[_locked(), "row"])

    assert with_db_retry("load_lesson", func) == "row"
    assert func.call_count == 2
    sleep.assert_called_once()


@patch("tutorbook.database.time.sleep")
def test_gives_up_after_max_attempts(sleep):
    func = MagicMock(side_effect=_locked())

    with pytest.raises(OperationalError):
        with_db_retry("load_lesson", func, max_attempts=3)
    assert func.call_count == 3
    assert sleep.call_count == 2


@patch("tutorbook.database.time.sleep")
def test_non_transient_errors_are_not_retried(sleep):
    func = MagicMock(side_effect=OperationalError("SELECT 1", {}, Exception("no such table: lessons")))

    with pytest.raises(OperationalError):
        with_db_retry("load_lesson", func)
    assert func.call_count == 1
    sleep.assert_not_called()


@patch("tutorbook.database.time.sleep")
def test_repository_reads_surface_transient_errors_to_retry(sleep):
    from tutorbook.repositories.lesson_repository import LessonRepository

    db = MagicMock()
    db.query.return_value.populate_existing.return_value.filter.return_value.first.side_effect = [_locked(), None]
    repository = LessonRepository(db)

    assert with_db_retry("load_lesson", lambda: repository.get_by_id("01LESSON")) is None
    assert sleep.call_count == 1

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from fieldops.db import translate_store_error, unit_of_work
from fieldops.errors import ConflictingAssignment, CrewNotFound, StoreTimeout, StoreUnavailable
from fieldops.models.models import Crew


class _PgError(Exception):
    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


def test_locked_sqlite_is_a_timeout():
    err = translate_store_error(OperationalError("UPDATE vehicles", {}, Exception("database is locked")))
    assert isinstance(err, StoreTimeout)
    assert err.retryable is True
    assert err.status_code == 503


def test_postgres_lock_timeout_code_is_a_timeout():
    err = translate_store_error(OperationalError("SELECT ... FOR UPDATE", {}, _PgError("canceling statement", "55P03")))
    assert isinstance(err, StoreTimeout)


def test_lost_connection_is_unavailable():
    err = translate_store_error(OperationalError("SELECT 1", {}, Exception("connection refused")))
    assert isinstance(err, StoreUnavailable)
    assert err.to_dict()["retryable"] is True


def test_integrity_error_is_a_conflict():
    err = translate_store_error(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))
    assert isinstance(err, ConflictingAssignment)
    assert err.status_code == 409


def test_unit_of_work_commits(db):
    with unit_of_work(db):
        db.add(Crew(name="Committed", capacity=2, is_available=True))

    assert db.query(Crew).filter(Crew.name == "Committed").count() == 1


def test_unit_of_work_rolls_back_domain_error(db):
    with pytest.raises(CrewNotFound):
        with unit_of_work(db):
            db.add(Crew(name="Ghost", capacity=2, is_available=True))
            db.flush()
            raise CrewNotFound("missing")

    assert db.query(Crew).filter(Crew.name == "Ghost").count() == 0


def test_unit_of_work_translates_store_errors(db):
    with pytest.raises(StoreTimeout):
        with unit_of_work(db):
            db.add(Crew(name="Slow", capacity=2, is_available=True))
            db.flush()
            raise OperationalError("UPDATE crews", {}, Exception("database is locked"))

    assert db.query(Crew).filter(Crew.name == "Slow").count() == 0


def test_crew_availability_check_constraint(db):
    db.add(Crew(name="Broken", capacity=2, is_available=False, current_job_id=None))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()

"""
Tests for the exam session state machine.
"""
from datetime import timedelta

import pytest

from exam_engine.core import session_lifecycle
from exam_engine.core.answer_intake import submit_answer
from exam_engine.core.error_responses import ErrorCode, ExamSessionError
from exam_engine.core.session_lifecycle import (
    abandon_session,
    complete_session,
    get_active_session,
    get_question,
    resume_session,
    start_session,
    sync_server_time,
)
from exam_engine.core.timing import utc_now
from exam_engine.models import (
    ExamCategory,
    ExamInvitation,
    ExamSession,
    SessionStatus,
)
from exam_engine.schemas.exam_sessions import SessionConfig, SubmitAnswerRequest
from tests.conftest import correct_option_id, question_ids, wrong_option_id


def _start(db_session, user, exam, config=None, **kwargs):
    if config is None and exam.effective_category in (
        ExamCategory.PRACTICE,
        ExamCategory.TEST,
    ):
        config = SessionConfig(num_questions=5, time_limit=30)
    return start_session(db_session, user, exam.id, config=config, **kwargs)


def _session_count(db_session) -> int:
    return db_session.query(ExamSession).count()


def _backdate(db_session, session_id: int, seconds: int) -> None:
    session = db_session.get(ExamSession, session_id)
    session.started_at = utc_now() - timedelta(seconds=seconds)
    db_session.commit()


class TestStartSession:
    """Tests for start_session."""

    def test_start_practice_session(self, db_session, test_user, exam_factory):
        """A configured practice session draws its questions and timer."""
        exam = exam_factory(num_questions=5)
        now = utc_now()

        started = _start(db_session, test_user, exam, now=now)

        assert started.exam_id == exam.id
        assert started.total_questions == 5
        assert started.time_limit == 30
        assert started.server_end_time == started.started_at + timedelta(minutes=30)

        session = db_session.get(ExamSession, started.session_id)
        assert session.status == SessionStatus.ACTIVE
        assert session.category == ExamCategory.PRACTICE
        assert sorted(session.question_order) == sorted(question_ids(exam))
        assert len(session.question_order) == session.total_questions
        assert session.answered_questions == 0

    def test_subset_of_questions(self, db_session, test_user, exam_factory):
        """Asking for fewer questions draws a unique subset."""
        exam = exam_factory(num_questions=10)

        started = _start(
            db_session, test_user, exam, config=SessionConfig(num_questions=4)
        )

        session = db_session.get(ExamSession, started.session_id)
        assert len(session.question_order) == 4
        assert len(set(session.question_order)) == 4
        assert set(session.question_order).issubset(question_ids(exam))

    def test_more_questions_than_available(self, db_session, test_user, exam_factory):
        """Asking for more questions than exist uses all of them."""
        exam = exam_factory(num_questions=3)

        started = _start(
            db_session, test_user, exam, config=SessionConfig(num_questions=20)
        )

        assert started.total_questions == 3

    def test_unshuffled_order_follows_exam(self, db_session, test_user, exam_factory):
        """Without shuffling questions keep their authored order."""
        exam = exam_factory(num_questions=6)

        started = _start(
            db_session, test_user, exam, config=SessionConfig(num_questions=6)
        )

        session = db_session.get(ExamSession, started.session_id)
        assert session.question_order == question_ids(exam)

    def test_untimed_practice(self, db_session, test_user, exam_factory):
        """Practice sessions may run without a time limit."""
        exam = exam_factory()

        started = _start(
            db_session, test_user, exam, config=SessionConfig(num_questions=5)
        )

        assert started.time_limit is None
        assert started.server_end_time is None

    def test_practice_requires_config(self, db_session, test_user, exam_factory):
        """Configurable categories cannot start without a config."""
        exam = exam_factory(category=ExamCategory.PRACTICE)

        with pytest.raises(ExamSessionError) as excinfo:
            start_session(db_session, test_user, exam.id)

        assert excinfo.value.code == ErrorCode.CONFIG_REQUIRED
        assert _session_count(db_session) == 0

    def test_test_exam_requires_time_limit(self, db_session, test_user, exam_factory):
        """A test exam without a time limit fails before any session exists."""
        exam = exam_factory(category=ExamCategory.TEST)

        with pytest.raises(ExamSessionError) as excinfo:
            _start(db_session, test_user, exam, config=SessionConfig(num_questions=5))

        assert excinfo.value.code == ErrorCode.TIME_LIMIT_REQUIRED
        assert _session_count(db_session) == 0

    def test_fixed_category_uses_exam_settings(
        self, db_session, test_user, exam_factory, invitation_factory
    ):
        """Invitation categories take duration and shuffling from the exam."""
        exam = exam_factory(
            num_questions=4,
            category=ExamCategory.COMPETITION,
            duration=20,
            shuffle_questions=True,
            randomize_options=True,
        )
        invitation_factory(exam)

        started = start_session(
            db_session,
            test_user,
            exam.id,
            invitation_token="invite-token",
            config=SessionConfig(num_questions=1, time_limit=600),
        )

        assert started.time_limit == 20
        assert started.total_questions == 4
        assert started.shuffle_questions is True
        assert started.shuffle_options is True

    def test_empty_exam(self, db_session, test_user, exam_factory):
        """An exam without live questions cannot be started."""
        exam = exam_factory(num_questions=0)

        with pytest.raises(ExamSessionError) as excinfo:
            _start(db_session, test_user, exam)

        assert excinfo.value.code == ErrorCode.EXAM_HAS_NO_QUESTIONS
        assert _session_count(db_session) == 0

    def test_soft_deleted_questions_excluded(
        self, db_session, test_user, exam_factory
    ):
        """Deleted questions are never drawn."""
        exam = exam_factory(num_questions=3)
        deleted = exam.exam_questions[0].question
        deleted.deleted_at = utc_now()
        db_session.commit()

        started = _start(db_session, test_user, exam)

        session = db_session.get(ExamSession, started.session_id)
        assert started.total_questions == 2
        assert deleted.id not in session.question_order

    def test_max_attempts_reached(self, db_session, test_user, exam_factory):
        """With one attempt allowed and one completed, a second start fails."""
        exam = exam_factory(max_attempts=1)
        started = _start(db_session, test_user, exam)
        complete_session(db_session, test_user, started.session_id)

        with pytest.raises(ExamSessionError) as excinfo:
            _start(db_session, test_user, exam)

        assert excinfo.value.code == ErrorCode.MAX_ATTEMPTS_REACHED
        assert _session_count(db_session) == 1


class TestInvitationConsumption:
    """Invitations are consumed by session start."""

    def test_start_consumes_invitation(
        self, db_session, test_user, exam_factory, invitation_factory
    ):
        """Starting marks the invitation used."""
        exam = exam_factory(category=ExamCategory.RECRUITMENT, duration=30)
        invitation = invitation_factory(exam)

        start_session(db_session, test_user, exam.id, invitation_token="invite-token")

        db_session.refresh(invitation)
        assert invitation.used_at is not None

    def test_used_invitation_creates_no_session(
        self, db_session, test_user, exam_factory, invitation_factory
    ):
        """An already-used invitation is refused and nothing is written."""
        exam = exam_factory(category=ExamCategory.RECRUITMENT, duration=30)
        invitation_factory(exam, used=True)

        with pytest.raises(ExamSessionError) as excinfo:
            start_session(
                db_session, test_user, exam.id, invitation_token="invite-token"
            )

        assert excinfo.value.code == ErrorCode.INVITATION_USED
        assert _session_count(db_session) == 0

    def test_invitation_cannot_be_reused(
        self, db_session, test_user, exam_factory, invitation_factory
    ):
        """A consumed invitation does not admit a second attempt."""
        exam = exam_factory(category=ExamCategory.CHALLENGE, duration=30)
        invitation_factory(exam)
        started = start_session(
            db_session, test_user, exam.id, invitation_token="invite-token"
        )
        complete_session(db_session, test_user, started.session_id)

        with pytest.raises(ExamSessionError) as excinfo:
            start_session(
                db_session, test_user, exam.id, invitation_token="invite-token"
            )

        assert excinfo.value.code == ErrorCode.INVITATION_USED
        assert _session_count(db_session) == 1

    def test_consumed_between_check_and_write(
        self, db_session, test_user, exam_factory, invitation_factory, monkeypatch
    ):
        """An invitation used by a concurrent start rolls the new session back."""
        exam = exam_factory(category=ExamCategory.RECRUITMENT, duration=30)
        invitation = invitation_factory(exam)

        original_check = session_lifecycle.check_access

        def check_then_consume(*args, **kwargs):
            decision = original_check(*args, **kwargs)
            db_session.query(ExamInvitation).filter(
                ExamInvitation.id == invitation.id
            ).update({"used_at": utc_now()}, synchronize_session=False)
            db_session.commit()
            return decision

        monkeypatch.setattr(session_lifecycle, "check_access", check_then_consume)

        with pytest.raises(ExamSessionError) as excinfo:
            start_session(
                db_session, test_user, exam.id, invitation_token="invite-token"
            )

        assert excinfo.value.code == ErrorCode.INVITATION_USED
        assert _session_count(db_session) == 0


class TestConcurrentSessions:
    """One active session per user."""

    def test_second_start_rejected(self, db_session, test_user, exam_factory):
        """A live session blocks starting another, on any exam."""
        first_exam = exam_factory()
        second_exam = exam_factory()
        first = _start(db_session, test_user, first_exam)

        with pytest.raises(ExamSessionError) as excinfo:
            _start(db_session, test_user, second_exam)

        assert excinfo.value.code == ErrorCode.CONCURRENT_SESSION
        assert excinfo.value.details["session_id"] == first.session_id

    def test_expired_session_is_reaped(self, db_session, test_user, exam_factory):
        """A timed-out active session is expired and no longer blocks."""
        exam = exam_factory()
        first = _start(db_session, test_user, exam)
        _backdate(db_session, first.session_id, seconds=31 * 60)

        second = _start(db_session, test_user, exam)

        assert second.session_id != first.session_id
        db_session.expire_all()
        assert db_session.get(ExamSession, first.session_id).status == (
            SessionStatus.EXPIRED
        )

    def test_racing_start_caught_by_index(
        self, db_session, test_user, exam_factory, monkeypatch
    ):
        """A start that slips past the check is stopped by the unique index."""
        exam = exam_factory()
        _start(db_session, test_user, exam)
        monkeypatch.setattr(
            session_lifecycle, "_reap_or_reject_active_session", lambda *args: None
        )

        with pytest.raises(ExamSessionError) as excinfo:
            _start(db_session, test_user, exam)

        assert excinfo.value.code == ErrorCode.CONCURRENT_SESSION
        active = (
            db_session.query(ExamSession)
            .filter(ExamSession.status == SessionStatus.ACTIVE)
            .count()
        )
        assert active == 1

    def test_other_users_unaffected(
        self, db_session, test_user, other_user, exam_factory
    ):
        """The limit is per user."""
        exam = exam_factory()
        _start(db_session, test_user, exam)

        assert _start(db_session, other_user, exam).session_id is not None


class TestResumeAndActive:
    """Tests for resume_session and get_active_session."""

    def test_resume_returns_state(self, db_session, test_user, exam_factory):
        """Resume reports order, progress and remaining time."""
        exam = exam_factory()
        now = utc_now()
        started = _start(db_session, test_user, exam, now=now)
        first_question = db_session.get(ExamSession, started.session_id).question_order[0]
        submit_answer(
            db_session,
            test_user,
            started.session_id,
            SubmitAnswerRequest(
                question_id=first_question,
                selected_option_id=correct_option_id(db_session, first_question),
            ),
            now=now + timedelta(seconds=5),
        )

        state = resume_session(
            db_session, test_user, started.session_id, now=now + timedelta(seconds=90)
        )

        assert state.status == SessionStatus.ACTIVE
        assert state.remaining_time == 30 * 60 - 90
        assert state.answered_questions == 1
        assert state.answered_question_ids == [first_question]
        assert len(state.question_order) == 5

    def test_resume_expired_session(self, db_session, test_user, exam_factory):
        """Resuming past the deadline expires the session."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)
        _backdate(db_session, started.session_id, seconds=30 * 60 + 1)

        with pytest.raises(ExamSessionError) as excinfo:
            resume_session(db_session, test_user, started.session_id)

        assert excinfo.value.code == ErrorCode.SESSION_EXPIRED
        db_session.expire_all()
        assert db_session.get(ExamSession, started.session_id).status == (
            SessionStatus.EXPIRED
        )

    def test_resume_other_users_session(
        self, db_session, test_user, other_user, exam_factory
    ):
        """Someone else's session is reported as not found."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)

        with pytest.raises(ExamSessionError) as excinfo:
            resume_session(db_session, other_user, started.session_id)

        assert excinfo.value.code == ErrorCode.SESSION_NOT_FOUND

    def test_active_session_lookup(self, db_session, test_user, exam_factory):
        """The user's active session is found, optionally per exam."""
        exam = exam_factory()
        other_exam = exam_factory()
        started = _start(db_session, test_user, exam)

        assert get_active_session(db_session, test_user).session_id == (
            started.session_id
        )
        assert get_active_session(db_session, test_user, exam.id) is not None
        assert get_active_session(db_session, test_user, other_exam.id) is None

    def test_no_active_session(self, db_session, test_user):
        """Users without a session get None."""
        assert get_active_session(db_session, test_user) is None

    def test_expired_active_session_is_reaped(
        self, db_session, test_user, exam_factory
    ):
        """A timed-out session is expired instead of returned."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)
        _backdate(db_session, started.session_id, seconds=2 * 60 * 60)

        assert get_active_session(db_session, test_user) is None
        db_session.expire_all()
        assert db_session.get(ExamSession, started.session_id).status == (
            SessionStatus.EXPIRED
        )


class TestGetQuestion:
    """Tests for get_question."""

    def test_question_without_correctness(self, db_session, test_user, exam_factory):
        """Served questions never carry correctness flags."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)
        session = db_session.get(ExamSession, started.session_id)

        view = get_question(db_session, test_user, started.session_id, 0)

        assert view.question_id == session.question_order[0]
        assert view.index == 0
        assert view.total_questions == 5
        assert view.answered is False
        assert len(view.options) == 3
        for option in view.options:
            assert set(option.model_dump()) == {"id", "text"}
        assert "is_correct" not in view.model_dump_json()

    def test_answered_flag(self, db_session, test_user, exam_factory):
        """Questions already answered are flagged."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)
        question_id = db_session.get(ExamSession, started.session_id).question_order[1]
        submit_answer(
            db_session,
            test_user,
            started.session_id,
            SubmitAnswerRequest(
                question_id=question_id,
                selected_option_id=wrong_option_id(db_session, question_id),
            ),
        )

        view = get_question(db_session, test_user, started.session_id, 1)

        assert view.answered is True

    @pytest.mark.parametrize("index", [-1, 5, 100])
    def test_index_out_of_range(self, db_session, test_user, exam_factory, index):
        """Indexes outside the session's order are rejected."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)

        with pytest.raises(ExamSessionError) as excinfo:
            get_question(db_session, test_user, started.session_id, index)

        assert excinfo.value.code == ErrorCode.INVALID_QUESTION_INDEX

    def test_shuffled_options_keep_the_same_set(
        self, db_session, test_user, exam_factory
    ):
        """Option shuffling permutes but never changes the options."""
        exam = exam_factory()
        started = _start(
            db_session,
            test_user,
            exam,
            config=SessionConfig(num_questions=5, shuffle_options=True),
        )

        views = [
            get_question(db_session, test_user, started.session_id, 0)
            for _ in range(10)
        ]

        option_sets = {frozenset(o.id for o in view.options) for view in views}
        assert len(option_sets) == 1

    def test_question_on_expired_session(self, db_session, test_user, exam_factory):
        """Questions are not served once time is up."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)
        _backdate(db_session, started.session_id, seconds=31 * 60)

        with pytest.raises(ExamSessionError) as excinfo:
            get_question(db_session, test_user, started.session_id, 0)

        assert excinfo.value.code == ErrorCode.SESSION_EXPIRED


class TestSyncServerTime:
    """Tests for sync_server_time."""

    def test_reports_server_clock(self, db_session, test_user, exam_factory):
        """The server's own clock and remaining time are returned."""
        exam = exam_factory()
        now = utc_now()
        started = _start(db_session, test_user, exam, now=now)

        snapshot = sync_server_time(
            db_session, test_user, started.session_id, now=now + timedelta(seconds=30)
        )

        assert snapshot.server_time == now + timedelta(seconds=30)
        assert snapshot.remaining_time == 30 * 60 - 30
        assert snapshot.server_end_time == started.server_end_time

    def test_untimed_session(self, db_session, test_user, exam_factory):
        """Untimed sessions report no remaining time."""
        exam = exam_factory()
        started = _start(
            db_session, test_user, exam, config=SessionConfig(num_questions=5)
        )

        snapshot = sync_server_time(db_session, test_user, started.session_id)

        assert snapshot.remaining_time is None
        assert snapshot.server_end_time is None


class TestAbandon:
    """Tests for abandon_session."""

    def test_abandon_active_session(self, db_session, test_user, exam_factory):
        """Abandoning ends the session without a score."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)

        result = abandon_session(db_session, test_user, started.session_id)

        assert result.status == SessionStatus.ABANDONED
        session = db_session.get(ExamSession, started.session_id)
        assert session.score is None
        assert session.completed_at is None

    def test_abandon_twice(self, db_session, test_user, exam_factory):
        """Terminal sessions cannot be abandoned again."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)
        abandon_session(db_session, test_user, started.session_id)

        with pytest.raises(ExamSessionError) as excinfo:
            abandon_session(db_session, test_user, started.session_id)

        assert excinfo.value.code == ErrorCode.SESSION_NOT_ACTIVE
        assert excinfo.value.details == {"status": "abandoned"}

    def test_abandon_completed(self, db_session, test_user, exam_factory):
        """Completed sessions stay completed."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)
        complete_session(db_session, test_user, started.session_id)

        with pytest.raises(ExamSessionError) as excinfo:
            abandon_session(db_session, test_user, started.session_id)

        assert excinfo.value.code == ErrorCode.SESSION_COMPLETED

    def test_abandon_frees_the_user(self, db_session, test_user, exam_factory):
        """After abandoning, a new session can start."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)
        abandon_session(db_session, test_user, started.session_id)

        assert _start(db_session, test_user, exam).session_id != started.session_id


class TestComplete:
    """Tests for complete_session."""

    def _answer(self, db_session, user, session_id, question_id, correct):
        option = (
            correct_option_id(db_session, question_id)
            if correct
            else wrong_option_id(db_session, question_id)
        )
        submit_answer(
            db_session,
            user,
            session_id,
            SubmitAnswerRequest(question_id=question_id, selected_option_id=option),
        )

    def test_score_from_answers(self, db_session, test_user, exam_factory):
        """Score is correct answers over total questions."""
        exam = exam_factory(num_questions=5)
        started = _start(db_session, test_user, exam)
        order = db_session.get(ExamSession, started.session_id).question_order
        self._answer(db_session, test_user, started.session_id, order[0], True)
        self._answer(db_session, test_user, started.session_id, order[1], True)
        self._answer(db_session, test_user, started.session_id, order[2], False)

        result = complete_session(db_session, test_user, started.session_id)

        assert result.status == SessionStatus.COMPLETED
        assert result.correct_answers == 2
        assert result.total_questions == 5
        assert result.score == pytest.approx(40.0)
        assert result.already_completed is False

    def test_complete_is_idempotent(self, db_session, test_user, exam_factory):
        """Repeating completion returns the stored result."""
        exam = exam_factory(num_questions=4)
        started = _start(db_session, test_user, exam)
        order = db_session.get(ExamSession, started.session_id).question_order
        self._answer(db_session, test_user, started.session_id, order[0], True)
        first = complete_session(db_session, test_user, started.session_id)

        second = complete_session(db_session, test_user, started.session_id)

        assert second.already_completed is True
        assert second.score == first.score
        assert second.completed_at == first.completed_at

    def test_complete_after_deadline(self, db_session, test_user, exam_factory):
        """A session that ran out of time can still be submitted."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)
        _backdate(db_session, started.session_id, seconds=45 * 60)

        result = complete_session(db_session, test_user, started.session_id)

        assert result.status == SessionStatus.COMPLETED
        assert result.score == 0.0

    def test_complete_expired_session(self, db_session, test_user, exam_factory):
        """Sessions already marked expired cannot be completed."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)
        _backdate(db_session, started.session_id, seconds=45 * 60)
        with pytest.raises(ExamSessionError):
            resume_session(db_session, test_user, started.session_id)

        with pytest.raises(ExamSessionError) as excinfo:
            complete_session(db_session, test_user, started.session_id)

        assert excinfo.value.code == ErrorCode.SESSION_NOT_ACTIVE
        assert excinfo.value.details == {"status": "expired"}

    def test_complete_abandoned_session(self, db_session, test_user, exam_factory):
        """Abandoned sessions cannot be completed."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)
        abandon_session(db_session, test_user, started.session_id)

        with pytest.raises(ExamSessionError) as excinfo:
            complete_session(db_session, test_user, started.session_id)

        assert excinfo.value.code == ErrorCode.SESSION_NOT_ACTIVE

    def test_complete_other_users_session(
        self, db_session, test_user, other_user, exam_factory
    ):
        """Only the owner can complete a session."""
        exam = exam_factory()
        started = _start(db_session, test_user, exam)

        with pytest.raises(ExamSessionError) as excinfo:
            complete_session(db_session, other_user, started.session_id)

        assert excinfo.value.code == ErrorCode.SESSION_NOT_FOUND

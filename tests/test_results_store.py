import logging
from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from timed_exam.models import db, Student, ExamSession, QuestionAnswer
from timed_exam.questions import REFERENCE_QUESTIONS
from timed_exam.results_store import InvalidSubmission, ResultsStoreError

QUESTIONS = [q.to_dict() for q in REFERENCE_QUESTIONS]
ALL_CORRECT = [q.correct_option_index for q in REFERENCE_QUESTIONS]


def summary(answers, time_taken=120, **overrides):
    correct = sum(1 for a, q in zip(answers, REFERENCE_QUESTIONS) if a == q.correct_option_index)
    data = {
        'score': round(100 * correct / len(REFERENCE_QUESTIONS)),
        'correctAnswers': correct,
        'totalQuestions': len(REFERENCE_QUESTIONS),
        'unansweredQuestions': answers.count(-1),
        'timeTaken': time_taken,
        'answers': answers,
    }
    data.update(overrides)
    return data


def test_submit_creates_student_session_and_answers(store, store_clock):
    answers = [2, 1, 0, -1, 1, 2, 2, 2, 2, 1]

    session_id = store.submit("Ann", "S1", answers, summary(answers, time_taken=95), QUESTIONS)

    student = Student.query.filter_by(school_id="S1").one()
    assert student.name == "Ann"

    exam_session = db.session.get(ExamSession, session_id)
    assert exam_session.student_id == student.id
    assert exam_session.total_score == 80
    assert exam_session.correct_answers == 8
    assert exam_session.total_questions == 10
    assert exam_session.time_taken == 95
    assert exam_session.to_dict()['endTime'] == store_clock.now.isoformat()
    assert exam_session.to_dict()['startTime'] == (store_clock.now - timedelta(seconds=95)).isoformat()

    rows = exam_session.answers.all()
    assert [r.question_number for r in rows] == list(range(1, 11))
    assert [r.student_answer for r in rows] == answers
    assert [r.correct_answer for r in rows] == ALL_CORRECT
    assert [r.is_correct for r in rows] == [True, True, False, False, True, True, True, True, True, True]
    assert all(r.time_spent == 0 for r in rows)


def test_repeat_school_id_reuses_student_and_keeps_first_name(store):
    first = store.submit("Ann", "S1", ALL_CORRECT, summary(ALL_CORRECT), QUESTIONS)
    second = store.submit("Annie", "S1", ALL_CORRECT, summary(ALL_CORRECT), QUESTIONS)

    assert first != second
    assert Student.query.count() == 1
    assert Student.query.one().name == "Ann"
    assert ExamSession.query.count() == 2
    assert QuestionAnswer.query.count() == 20


def test_correctness_is_computed_from_questions_not_client_claims(store):
    answers = [0] * 10
    falsified = summary(answers, score=100, correctAnswers=10, isCorrect=[True] * 10)
    falsified['answers'] = ALL_CORRECT

    session_id = store.submit("Ann", "S1", answers, falsified, QUESTIONS)

    details = store.exam_details(session_id)
    assert [d['studentAnswer'] for d in details] == answers
    assert not any(d['isCorrect'] for d in details)


def test_mismatched_correct_count_is_logged_and_stored_as_sent(store, caplog):
    answers = [0] * 10
    falsified = summary(answers, score=100, correctAnswers=10)

    with caplog.at_level(logging.WARNING, logger="timed_exam.results_store"):
        session_id = store.submit("Ann", "S1", answers, falsified, QUESTIONS)

    assert "Client reported 10 correct answers for school id 'S1', answers match 0" in caplog.text
    assert db.session.get(ExamSession, session_id).correct_answers == 10


def test_matching_correct_count_logs_no_warning(store, caplog):
    with caplog.at_level(logging.WARNING, logger="timed_exam.results_store"):
        store.submit("Ann", "S1", ALL_CORRECT, summary(ALL_CORRECT), QUESTIONS)

    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


def test_time_spent_is_stored_when_sent(store):
    spent = [5, 6, 7, 8, 9, 10, 11, 12, 13, 14]

    session_id = store.submit("Ann", "S1", ALL_CORRECT, summary(ALL_CORRECT, timeSpent=spent), QUESTIONS)

    assert [d['timeSpent'] for d in store.exam_details(session_id)] == spent


def test_unset_answers_are_stored_as_unanswered(store):
    answers = [2, None, None, None, None, None, None, None, None, None]

    session_id = store.submit("Ann", "S1", answers, summary([2] + [-1] * 9), QUESTIONS)

    assert [d['studentAnswer'] for d in store.exam_details(session_id)] == [2] + [-1] * 9


@pytest.mark.parametrize("name,school_id,answers,results,questions", [
    ("", "S1", ALL_CORRECT, summary(ALL_CORRECT), QUESTIONS),
    ("Ann", None, ALL_CORRECT, summary(ALL_CORRECT), QUESTIONS),
    ("Ann", "S1", "2,1,3", summary(ALL_CORRECT), QUESTIONS),
    ("Ann", "S1", ALL_CORRECT + [1], summary(ALL_CORRECT), QUESTIONS),
    ("Ann", "S1", ALL_CORRECT, summary(ALL_CORRECT), [{'id': 1, 'options': []}] * 10),
    ("Ann", "S1", ALL_CORRECT, {'score': 100}, QUESTIONS),
    ("Ann", "S1", ALL_CORRECT, summary(ALL_CORRECT, score=250), QUESTIONS),
    ("Ann", "S1", ["a"] * 10, summary(ALL_CORRECT), QUESTIONS),
    ("Ann", "S1", ALL_CORRECT, None, QUESTIONS),
])
def test_invalid_submissions_write_nothing(store, name, school_id, answers, results, questions):
    with pytest.raises(InvalidSubmission):
        store.submit(name, school_id, answers, results, questions)

    assert Student.query.count() == 0
    assert ExamSession.query.count() == 0


def test_failure_in_answer_batch_rolls_back_everything(store, monkeypatch):
    def broken_init(self, **kwargs):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(QuestionAnswer, "__init__", broken_init)

    with pytest.raises(ResultsStoreError):
        store.submit("Ann", "S1", ALL_CORRECT, summary(ALL_CORRECT), QUESTIONS)

    monkeypatch.undo()
    assert Student.query.count() == 0
    assert ExamSession.query.count() == 0
    assert QuestionAnswer.query.count() == 0


def test_concurrent_first_submission_reuses_winning_student(store, monkeypatch):
    db.session.add(Student(name="Winner", school_id="S1"))
    db.session.commit()

    real_find = store._find_student
    lookups = []

    def racing_find(school_id):
        # First lookup happens before the other request committed its student
        lookups.append(school_id)
        return None if len(lookups) == 1 else real_find(school_id)

    monkeypatch.setattr(store, '_find_student', racing_find)

    session_id = store.submit("Loser", "S1", ALL_CORRECT, summary(ALL_CORRECT), QUESTIONS)

    assert Student.query.count() == 1
    assert Student.query.one().name == "Winner"
    assert db.session.get(ExamSession, session_id).student.name == "Winner"


def test_results_are_newest_first(store, store_clock):
    base = store_clock.now
    store.submit("Ann", "S1", ALL_CORRECT, summary(ALL_CORRECT), QUESTIONS)
    store_clock.now = base + timedelta(hours=1)
    store.submit("Bob", "S2", [0] * 10, summary([0] * 10), QUESTIONS)
    store_clock.now = base + timedelta(hours=2)
    store.submit("Ann", "S1", [0] * 10, summary([0] * 10), QUESTIONS)

    ann = store.results_for_student("S1")
    assert [r['totalScore'] for r in ann] == [0, 100]
    assert all(r['name'] == "Ann" and r['schoolId'] == "S1" for r in ann)

    everyone = store.all_results()
    assert [r['schoolId'] for r in everyone] == ["S1", "S2", "S1"]
    assert set(everyone[0]) == {'examSessionId', 'name', 'schoolId', 'totalScore', 'correctAnswers',
                                'totalQuestions', 'timeTaken', 'startTime', 'endTime'}


def test_reads_for_unknown_ids_are_empty(store):
    assert store.results_for_student("nobody") == []
    assert store.all_results() == []
    assert store.exam_details(999) == []

# timed_exam/results_store.py
"""Persistence of finished exam sessions.

A submission writes, in order, the student (looked up or created by school id),
one exam session row and one answer row per question. The three writes share a
single transaction: any failure rolls all of them back.
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .models import db, Student, ExamSession, QuestionAnswer

log = logging.getLogger(__name__)


class ResultsStoreError(Exception):
    """Raised when a submission or a read cannot be completed by the database."""


class InvalidSubmission(ValueError):
    """Raised when a submission payload is malformed."""


def _as_int(value, field):
    # bool is an int subclass but never a valid answer or count
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidSubmission(f"'{field}' must be an integer, got {value!r}")
    return value


class ResultsStore:
    def __init__(self, clock=None):
        self._now = clock or (lambda: datetime.now(timezone.utc))

    def submit(self, student_name, school_id, answers, result_summary, questions):
        """Records a finished exam and returns the new exam session id.

        ``is_correct`` for every answer is computed here from
        ``questions[i]['correctAnswer']``; correctness data sent by the client
        is never trusted.
        """
        student_name, school_id, answers, summary, correct_answers, time_spent = self._validate(
            student_name, school_id, answers, result_summary, questions)

        recomputed = sum(answer == correct_answers[index] for index, answer in enumerate(answers))
        if recomputed != summary['correctAnswers']:
            # Stored as sent; the per-answer rows carry the recomputed truth
            log.warning(f"Client reported {summary['correctAnswers']} correct answers for school id '{school_id}', "
                        f"answers match {recomputed}")

        try:
            # 1. Student (upsert by school id)
            student = self._get_or_create_student(student_name, school_id)

            # 2. Exam session
            now = self._now()
            exam_session = ExamSession(
                student_id=student.id,
                start_time=now - timedelta(seconds=summary['timeTaken']),
                end_time=now,
                total_score=summary['score'],
                correct_answers=summary['correctAnswers'],
                total_questions=summary['totalQuestions'],
                time_taken=summary['timeTaken'],
            )
            db.session.add(exam_session)
            db.session.flush() # Need the id for the answer rows

            # 3. Answer batch
            db.session.add_all([
                QuestionAnswer(
                    exam_session_id=exam_session.id,
                    question_number=index + 1,
                    student_answer=answer,
                    correct_answer=correct_answers[index],
                    is_correct=answer == correct_answers[index],
                    time_spent=time_spent[index],
                )
                for index, answer in enumerate(answers)
            ])
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            log.exception(f"Failed to store exam results for school id '{school_id}': {e}")
            raise ResultsStoreError("Database error") from e

        log.info(f"Stored exam session {exam_session.id} for student {student.id} ('{school_id}'): "
                 f"score {summary['score']} ({summary['correctAnswers']}/{summary['totalQuestions']})")
        return exam_session.id

    def results_for_student(self, school_id):
        query = (ExamSession.query.join(Student)
                 .filter(Student.school_id == school_id))
        return self._summaries(query, f"student '{school_id}'")

    def all_results(self):
        return self._summaries(ExamSession.query, "all students")

    def exam_details(self, exam_session_id):
        try:
            answers = (QuestionAnswer.query
                       .filter_by(exam_session_id=exam_session_id)
                       .order_by(QuestionAnswer.question_number.asc())
                       .all())
        except SQLAlchemyError as e:
            db.session.rollback()
            log.exception(f"Error fetching answers for exam session {exam_session_id}: {e}")
            raise ResultsStoreError("Database error") from e
        return [a.to_dict() for a in answers]

    # --- helpers ---

    def _summaries(self, query, scope):
        try:
            sessions = query.order_by(ExamSession.start_time.desc(), ExamSession.id.desc()).all()
        except SQLAlchemyError as e:
            db.session.rollback()
            log.exception(f"Error fetching exam results for {scope}: {e}")
            raise ResultsStoreError("Database error") from e
        log.debug(f"Returning {len(sessions)} exam results for {scope}")
        return [s.to_dict() for s in sessions]

    def _find_student(self, school_id):
        return Student.query.filter_by(school_id=school_id).first()

    def _get_or_create_student(self, name, school_id):
        student = self._find_student(school_id)
        if student:
            # Existing identity is reused as-is; the name is not re-synced
            return student

        student = Student(name=name, school_id=school_id)
        db.session.add(student)
        try:
            db.session.flush()
        except IntegrityError:
            # Lost a first-submission race on the same school id. Nothing else
            # has been written yet, so the whole transaction can go.
            db.session.rollback()
            log.warning(f"Student '{school_id}' was created concurrently; reusing the existing record.")
            student = self._find_student(school_id)
            if student is None:
                raise
            return student
        log.info(f"Created student {student.id} for school id '{school_id}'")
        return student

    def _validate(self, student_name, school_id, answers, result_summary, questions):
        student_name = str(student_name or '').strip()
        school_id = str(school_id or '').strip()
        if not student_name or not school_id:
            raise InvalidSubmission("Student name and school id are required")

        if not isinstance(answers, list):
            raise InvalidSubmission("'answers' must be a list")
        if not isinstance(questions, list):
            raise InvalidSubmission("'questions' must be a list")
        if len(answers) > len(questions):
            raise InvalidSubmission(f"Got {len(answers)} answers for {len(questions)} questions")
        # Unset entries are stored as unanswered
        answers = [-1 if a is None else _as_int(a, 'answers') for a in answers]

        correct_answers = []
        for index, question in enumerate(questions[:len(answers)]):
            if not isinstance(question, dict) or 'correctAnswer' not in question:
                raise InvalidSubmission(f"Question {index + 1} has no 'correctAnswer'")
            correct_answers.append(_as_int(question['correctAnswer'], 'correctAnswer'))

        if not isinstance(result_summary, dict):
            raise InvalidSubmission("'results' must be an object")
        summary = {}
        for field in ('score', 'correctAnswers', 'totalQuestions', 'timeTaken'):
            if field not in result_summary:
                raise InvalidSubmission(f"'results.{field}' is required")
            summary[field] = _as_int(result_summary[field], f"results.{field}")
        if not 0 <= summary['score'] <= 100:
            raise InvalidSubmission(f"'results.score' must be between 0 and 100, got {summary['score']}")
        if summary['timeTaken'] < 0:
            raise InvalidSubmission("'results.timeTaken' must not be negative")

        time_spent = result_summary.get('timeSpent') or []
        if not isinstance(time_spent, list):
            raise InvalidSubmission("'results.timeSpent' must be a list")
        time_spent = [_as_int(t, 'results.timeSpent') for t in time_spent[:len(answers)]]
        time_spent += [0] * (len(answers) - len(time_spent))

        return student_name, school_id, answers, summary, correct_answers, time_spent

# timed_exam/models.py
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone # Use timezone-aware datetimes
import logging

# Get the logger instance
log = logging.getLogger(__name__)

db = SQLAlchemy()


def _isoformat(value):
    if value is None:
        return None
    # SQLite hands back naive datetimes even for timezone=True columns
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class Student(db.Model):
    __tablename__ = 'student' # Explicit table name
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    school_id = db.Column(db.String(80), unique=True, nullable=False) # Upsert key
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    # When a student is deleted, their exam sessions are also deleted
    exam_sessions = db.relationship('ExamSession', back_populates='student', lazy='dynamic', cascade="all, delete-orphan")

    def __repr__(self):
        return f'<Student {self.school_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'schoolId': self.school_id,
            'createdAt': _isoformat(self.created_at),
        }


class ExamSession(db.Model):
    """One finished exam attempt, created exactly once per submission."""
    __tablename__ = 'exam_session'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False, index=True)
    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=False)
    total_score = db.Column(db.Integer, nullable=False) # 0-100
    correct_answers = db.Column(db.Integer, nullable=False)
    total_questions = db.Column(db.Integer, nullable=False)
    time_taken = db.Column(db.Integer, nullable=False) # Seconds

    student = db.relationship('Student', back_populates='exam_sessions', lazy='joined')
    answers = db.relationship('QuestionAnswer', back_populates='exam_session', lazy='dynamic',
                              cascade="all, delete-orphan", order_by='QuestionAnswer.question_number')

    def __repr__(self):
        return f'<ExamSession ID: {self.id}, Student ID: {self.student_id}, Score: {self.total_score}>'

    def to_dict(self):
        """Serializes the session as the summary row returned by the results endpoints."""
        name = None
        school_id = None
        try:
            if self.student:
                name = self.student.name
                school_id = self.student.school_id
        except Exception as e:
            log.warning(f"Error accessing student for ExamSession ID {self.id}: {e}", exc_info=True)

        return {
            'examSessionId': self.id,
            'name': name,
            'schoolId': school_id,
            'totalScore': self.total_score,
            'correctAnswers': self.correct_answers,
            'totalQuestions': self.total_questions,
            'timeTaken': self.time_taken,
            'startTime': _isoformat(self.start_time),
            'endTime': _isoformat(self.end_time),
        }


class QuestionAnswer(db.Model):
    __tablename__ = 'question_answer'
    id = db.Column(db.Integer, primary_key=True)
    exam_session_id = db.Column(db.Integer, db.ForeignKey('exam_session.id', ondelete='CASCADE'), nullable=False, index=True)
    question_number = db.Column(db.Integer, nullable=False) # 1-based
    student_answer = db.Column(db.Integer, nullable=False) # -1 when unanswered
    correct_answer = db.Column(db.Integer, nullable=False)
    is_correct = db.Column(db.Boolean, nullable=False, default=False)
    time_spent = db.Column(db.Integer, nullable=False, default=0) # Seconds

    exam_session = db.relationship('ExamSession', back_populates='answers')

    def __repr__(self):
        return f'<QuestionAnswer Q{self.question_number} for ExamSession {self.exam_session_id}>'

    def to_dict(self):
        return {
            'questionNumber': self.question_number,
            'studentAnswer': self.student_answer,
            'correctAnswer': self.correct_answer,
            'isCorrect': bool(self.is_correct),
            'timeSpent': self.time_spent,
        }

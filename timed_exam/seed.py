# timed_exam/seed.py
import logging
from .app import create_app # Import your app factory
from .models import Student
from .questions import REFERENCE_QUESTIONS
from .results_store import ResultsStore, ResultsStoreError

# Configure logging for the script
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

DEMO_STUDENT_NAME = 'Demo Student'
DEMO_SCHOOL_ID = 'DEMO-001'
# Seven of the ten reference questions right, one timed out
DEMO_ANSWERS = [2, 1, 3, 1, 0, 2, -1, 2, 1, 1]


def seed_data(app=None):
    """Stores one demo submission so the results endpoints have something to show."""
    app = app or create_app() # Create an app instance to work within the app context
    with app.app_context():
        logging.info("--- Starting Database Seeding ---")

        existing = Student.query.filter_by(school_id=DEMO_SCHOOL_ID).first()
        if existing:
            logging.info(f"Demo student '{DEMO_SCHOOL_ID}' already exists. Skipping creation.")
            logging.info("--- Database Seeding Finished ---")
            return None

        questions = [q.to_dict() for q in REFERENCE_QUESTIONS]
        correct = sum(1 for a, q in zip(DEMO_ANSWERS, REFERENCE_QUESTIONS) if a == q.correct_option_index)
        results = {
            'score': round(100 * correct / len(REFERENCE_QUESTIONS)),
            'correctAnswers': correct,
            'totalQuestions': len(REFERENCE_QUESTIONS),
            'unansweredQuestions': DEMO_ANSWERS.count(-1),
            'timeTaken': 312,
            'answers': DEMO_ANSWERS,
            'timeSpent': [25, 30, 18, 40, 55, 22, 60, 19, 28, 15],
        }
        try:
            exam_session_id = ResultsStore().submit(DEMO_STUDENT_NAME, DEMO_SCHOOL_ID, DEMO_ANSWERS, results, questions)
            logging.info(f"Demo exam session {exam_session_id} created successfully.")
        except ResultsStoreError as e:
            logging.error(f"Error creating demo submission: {e}")
            raise

        logging.info("--- Database Seeding Finished ---")
        return exam_session_id


if __name__ == '__main__':
    seed_data()

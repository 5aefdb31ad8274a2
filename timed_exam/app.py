# timed_exam/app.py
import os
from flask import Flask, request, jsonify
from flask_cors import CORS
from datetime import datetime, timezone
import logging

# --- Cloud SQL Connector Imports ---
import sqlalchemy
from google.cloud.sql.connector import Connector, IPTypes

# Import models and config
from .models import db
from .config import Config
from .questions import REFERENCE_QUESTIONS
from .results_store import ResultsStore, ResultsStoreError, InvalidSubmission

# --- Helper Function for Cloud SQL Connection ---
connector = None


def _make_getconn(config):
    """Returns a connection factory for the configured Cloud SQL instance."""
    def getconn() -> sqlalchemy.engine.base.Connection:
        global connector
        if connector is None:
            logging.info("Initializing Cloud SQL Connector...")
            # Connector() will automatically look for credentials
            # (GOOGLE_APPLICATION_CREDENTIALS, gcloud auth, etc.)
            connector = Connector()
        try:
            return connector.connect(
                config['INSTANCE_CONNECTION_NAME'],
                "pymysql",
                user=config['DB_USER'],
                password=config['DB_PASS'],
                db=config['DB_NAME'],
                ip_type=IPTypes.PUBLIC
            )
        except Exception as e:
            logging.exception(f"Failed to connect to Cloud SQL instance '{config['INSTANCE_CONNECTION_NAME']}' as user '{config['DB_USER']}': {e}")
            raise
    return getconn


# Factory function to create the Flask application
def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # --- Configure Logging ---
    log_level = app.config.get('LOG_LEVEL', 'INFO')
    logging.basicConfig(level=log_level,
                        format='%(asctime)s %(levelname)s %(name)s %(threadName)s : %(message)s')
    app.logger.info(f"Flask App starting with log level {log_level}")

    # --- Configure SQLAlchemy: Cloud SQL when fully configured, plain URI otherwise ---
    if all([app.config.get('DB_USER'), app.config.get('DB_PASS'), app.config.get('DB_NAME'), app.config.get('INSTANCE_CONNECTION_NAME')]):
        app.logger.info(f"Configuring SQLAlchemy for Cloud SQL instance: {app.config['INSTANCE_CONNECTION_NAME']}")
        app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {
            "creator": _make_getconn(app.config),
            "pool_size": 5,
            "max_overflow": 2,
            "pool_timeout": 30,
            "pool_recycle": 1800,
        }
        # Dummy URI needed by Flask-SQLAlchemy, but connection is handled by 'creator'
        app.config['SQLALCHEMY_DATABASE_URI'] = "mysql+pymysql://"
    else:
        app.logger.info(f"Using database URI: {app.config['SQLALCHEMY_DATABASE_URI']}")

    db.init_app(app)

    # Initialize CORS
    CORS(app, resources={r"/api/*": {"origins": app.config['CORS_ORIGINS'],
                                     "methods": ["GET", "POST", "OPTIONS"],
                                     "allow_headers": ["Content-Type"]}})

    with app.app_context():
        db.create_all()

    app.extensions['results_store'] = ResultsStore()

    def store():
        return app.extensions['results_store']

    # --- API Routes ---

    # Simple route for testing if the app is up
    @app.route('/api/test', methods=['GET'])
    def test():
        database = 'Connected'
        try:
            db.session.execute(sqlalchemy.text('SELECT 1'))
        except Exception as e:
            app.logger.error(f"DB connection check failed: {e}")
            database = 'Unavailable'
        return jsonify({
            'message': 'Server is working!',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'database': database
        })

    @app.route('/api/questions', methods=['GET'])
    def get_questions():
        time_per_question = app.config['EXAM_TIME_PER_QUESTION']
        return jsonify({
            'questions': [q.to_dict() for q in REFERENCE_QUESTIONS],
            'timePerQuestion': time_per_question,
            'warningTime': app.config['EXAM_WARNING_TIME'],
            'totalTime': time_per_question * len(REFERENCE_QUESTIONS)
        })

    @app.route('/api/submit-exam', methods=['POST'])
    def submit_exam():
        """
        Stores a finished exam: upserts the student by school id, then records
        the session and its per-question answers in one transaction.
        """
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            app.logger.warning("Invalid submission payload: body is not a JSON object.")
            return jsonify({'error': 'Request body must be a JSON object'}), 400

        school_id = data.get('schoolId')
        app.logger.info(f"Submission received for school id '{school_id}'")

        try:
            exam_session_id = store().submit(
                data.get('studentName'),
                school_id,
                data.get('answers'),
                data.get('results'),
                data.get('questions'),
            )
        except InvalidSubmission as e:
            app.logger.warning(f"Rejected submission for school id '{school_id}': {e}")
            return jsonify({'error': str(e)}), 400
        except ResultsStoreError:
            return jsonify({'error': 'Database error'}), 500
        except Exception as e:
            db.session.rollback()
            app.logger.exception(f"Unexpected error during submission for school id '{school_id}': {e}")
            return jsonify({'error': 'Internal server error'}), 500

        return jsonify({
            'success': True,
            'message': 'Exam results stored successfully',
            'examSessionId': exam_session_id
        }), 200

    @app.route('/api/student-results/<school_id>', methods=['GET'])
    def get_student_results(school_id):
        try:
            return jsonify(store().results_for_student(school_id))
        except ResultsStoreError:
            return jsonify({'error': 'Database error'}), 500

    @app.route('/api/all-results', methods=['GET'])
    def get_all_results():
        app.logger.info("Admin requested all results")
        try:
            results = store().all_results()
        except ResultsStoreError:
            return jsonify({'error': 'Database error'}), 500
        app.logger.info(f"Returning {len(results)} results")
        return jsonify(results)

    @app.route('/api/exam-details/<int:exam_session_id>', methods=['GET'])
    def get_exam_details(exam_session_id):
        try:
            return jsonify(store().exam_details(exam_session_id))
        except ResultsStoreError:
            return jsonify({'error': 'Database error'}), 500

    return app


if __name__ == '__main__':
    app = create_app()
    # Use environment variable for port or default to 3000
    port = int(os.environ.get('PORT', 3000))
    # Debug should be False in production, controlled by an environment variable
    debug_mode = os.environ.get('FLASK_DEBUG', 'False').lower() in ('true', '1', 't')
    app.run(host='0.0.0.0', port=port, debug=debug_mode)

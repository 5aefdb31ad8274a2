# timed_exam/exam_session.py
"""Client-side exam session state machine.

The controller owns one ``ExamSession`` value and moves it through
IDLE -> IN_PROGRESS -> FINISHED. Timers are plain scheduled events: anything
with ``call_later(delay, callback, *args)`` returning a handle with
``cancel()`` works, an ``asyncio`` event loop included. Rendering is kept out
of the transitions; front ends subscribe and receive an ``ExamView`` after
every change.

On an event loop the results sink runs in the default executor, or as a task
when it is a coroutine function, so a slow server never stalls the timers.
"""
import asyncio
import enum
import inspect
import logging
import time
from dataclasses import dataclass, replace
from functools import wraps
from typing import Callable, List, Optional, Sequence, Tuple

from .questions import Question, REFERENCE_QUESTIONS

log = logging.getLogger(__name__)

UNANSWERED = -1 # Timed out, or never answered by the time of scoring


class ExamPhase(enum.Enum):
    IDLE = 'idle'
    IN_PROGRESS = 'in_progress'
    FINISHED = 'finished'


@dataclass(frozen=True)
class ExamConfig:
    time_per_question: int = 60 # seconds per question
    warning_time: int = 10 # seconds left when the question timer turns urgent
    grace_delay: float = 1.5 # pause between a question timing out and auto-advance
    tick_interval: float = 1.0

    @classmethod
    def from_dict(cls, data):
        """Reads the timing block served by ``GET /api/questions``."""
        return cls(time_per_question=int(data.get('timePerQuestion', cls.time_per_question)),
                   warning_time=int(data.get('warningTime', cls.warning_time)))


@dataclass
class ExamSession:
    student_name: str
    student_id: str
    started_at_ms: int
    answers: List[Optional[int]]
    time_spent: List[int]
    current_index: int = 0
    question_started_at_ms: int = 0


@dataclass(frozen=True)
class ExamResult:
    score: int
    correct_answers: int
    total_questions: int
    unanswered_questions: int
    time_taken: int
    answers: Tuple[int, ...]
    time_spent: Tuple[int, ...]

    def to_dict(self):
        return {
            'score': self.score,
            'correctAnswers': self.correct_answers,
            'totalQuestions': self.total_questions,
            'unansweredQuestions': self.unanswered_questions,
            'timeTaken': self.time_taken,
            'answers': list(self.answers),
            'timeSpent': list(self.time_spent),
        }


@dataclass(frozen=True)
class ExamView:
    """What a front end needs to draw the current screen."""
    phase: ExamPhase
    total_questions: int
    student_name: Optional[str] = None
    student_id: Optional[str] = None
    question_number: int = 0 # 1-based, 0 when no question is shown
    prompt: Optional[str] = None
    options: Tuple[str, ...] = ()
    selected_option: Optional[int] = None
    progress_percent: float = 0.0
    question_time_left: int = 0
    urgent: bool = False
    total_time_left: int = 0
    is_last_question: bool = False
    result: Optional[ExamResult] = None

    @property
    def total_time_display(self):
        minutes, seconds = divmod(max(self.total_time_left, 0), 60)
        return f"{minutes}:{seconds:02d}"


def percent_score(correct, total):
    """Rounds 100 * correct / total half up, like JavaScript's Math.round."""
    if total <= 0:
        return 0
    return (200 * correct + total) // (2 * total)


def calculate_result(session: ExamSession, questions: Sequence[Question], now_ms: int) -> ExamResult:
    correct = 0
    unanswered = 0
    answers = []
    for index, answer in enumerate(session.answers):
        # Unset entries (question never shown or never answered) count as unanswered
        if answer is None or answer == UNANSWERED:
            unanswered += 1
            answers.append(UNANSWERED)
            continue
        if answer == questions[index].correct_option_index:
            correct += 1
        answers.append(answer)

    total = len(questions)
    return ExamResult(
        score=percent_score(correct, total),
        correct_answers=correct,
        total_questions=total,
        unanswered_questions=unanswered,
        time_taken=max(0, (now_ms - session.started_at_ms) // 1000),
        answers=tuple(answers),
        time_spent=tuple(session.time_spent),
    )


def _guarded(message):
    """Turns an unexpected failure of a user-facing operation into an error notification."""
    def decorator(method):
        @wraps(method)
        def wrapper(self, *args, **kwargs):
            try:
                return method(self, *args, **kwargs)
            except Exception:
                log.exception(message)
                self._notify(message, 'error')
                return None
        return wrapper
    return decorator


class ExamSessionController:
    def __init__(self, questions: Sequence[Question] = REFERENCE_QUESTIONS, config: Optional[ExamConfig] = None,
                 scheduler=None, clock: Callable[[], float] = time.time,
                 results_sink: Optional[Callable[[dict], object]] = None,
                 notifier: Optional[Callable[[str, str], None]] = None):
        if not questions:
            raise ValueError("An exam needs at least one question")
        self.questions = tuple(questions)
        self.config = config or ExamConfig()
        self._scheduler = scheduler
        self._clock = clock
        self._results_sink = results_sink
        self._notifier = notifier
        self._listeners = []

        # Bumped on every exit from IN_PROGRESS; callbacks from older generations are ignored
        self._generation = 0
        self._question_handle = None
        self._grace_handle = None
        self._total_handle = None
        self._reset_state()

    def _reset_state(self):
        self.phase = ExamPhase.IDLE
        self.session: Optional[ExamSession] = None
        self.result: Optional[ExamResult] = None
        self.exam_session_id = None
        self.submission_error: Optional[Exception] = None
        self._question_time_left = self.config.time_per_question

    @property
    def total_questions(self):
        return len(self.questions)

    @property
    def total_time(self):
        return self.config.time_per_question * self.total_questions

    # --- user actions ---

    @_guarded("Error starting exam")
    def start(self, student_name, student_id):
        student_name = (student_name or '').strip()
        student_id = (student_id or '').strip()
        if not student_name or not student_id:
            self._notify("Please fill in all required fields", 'warning')
            return False
        if self.phase is not ExamPhase.IDLE:
            self._notify("An exam is already loaded; restart before starting a new one", 'warning')
            return False

        scheduler = self._scheduler or asyncio.get_running_loop()
        self._scheduler = scheduler

        now_ms = self._now_ms()
        self._generation += 1
        self.session = ExamSession(
            student_name=student_name,
            student_id=student_id,
            started_at_ms=now_ms,
            answers=[None] * self.total_questions,
            time_spent=[0] * self.total_questions,
        )
        self.phase = ExamPhase.IN_PROGRESS
        self._start_question(now_ms)
        self._total_handle = self._schedule(self.config.tick_interval, self._on_total_tick)
        log.info(f"Exam started for '{student_name}' ({student_id}), {self.total_questions} questions, "
                 f"{self.total_time}s total")
        self._notify("Exam started! Good luck!", 'success')
        self._emit()
        return True

    @_guarded("Error selecting option")
    def select_answer(self, option_index):
        if self.phase is not ExamPhase.IN_PROGRESS:
            log.debug(f"Ignoring answer selection while {self.phase.value}")
            return False
        question = self.questions[self.session.current_index]
        if isinstance(option_index, bool) or not isinstance(option_index, int) \
                or not 0 <= option_index < len(question.options):
            self._notify(f"Invalid option {option_index!r}", 'warning')
            return False
        # Re-selection is allowed until the question is left
        self.session.answers[self.session.current_index] = option_index
        self._emit()
        return True

    @_guarded("Error moving to next question")
    def advance(self):
        if self.phase is not ExamPhase.IN_PROGRESS:
            log.debug(f"Ignoring advance while {self.phase.value}")
            return
        if self.session.current_index < self.total_questions - 1:
            now_ms = self._now_ms()
            self._close_question(now_ms)
            self.session.current_index += 1
            self._start_question(now_ms)
            self._emit()
        else:
            self._finish()

    @_guarded("Error submitting exam")
    def submit(self):
        if self.phase is not ExamPhase.IN_PROGRESS:
            log.debug(f"Ignoring submit while {self.phase.value}")
            return
        self._finish()

    def restart(self):
        """Returns to IDLE from any phase. Never raises."""
        try:
            self._stop_timers()
        except Exception:
            log.exception("Error stopping timers during restart")
        self._generation += 1
        self._reset_state()
        log.info("Exam restarted")
        self._emit()

    # --- observation ---

    def subscribe(self, listener: Callable[[ExamView], None]):
        """Registers a listener for view updates and returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def view(self) -> ExamView:
        base = ExamView(phase=self.phase, total_questions=self.total_questions,
                        question_time_left=self._question_time_left,
                        total_time_left=self.total_time, result=self.result)
        if self.session is None:
            return base

        base = replace(base, student_name=self.session.student_name, student_id=self.session.student_id)
        if self.phase is not ExamPhase.IN_PROGRESS:
            return replace(base, total_time_left=0, question_time_left=0, progress_percent=100.0)

        index = self.session.current_index
        question = self.questions[index]
        return replace(
            base,
            question_number=index + 1,
            prompt=question.prompt,
            options=question.options,
            selected_option=self.session.answers[index],
            progress_percent=(index + 1) / self.total_questions * 100,
            urgent=self._question_time_left <= self.config.warning_time,
            total_time_left=max(0, self._total_remaining()),
            is_last_question=index == self.total_questions - 1,
        )

    def results_payload(self):
        """Body for ``POST /api/submit-exam``; None until the exam is finished."""
        if self.result is None or self.session is None:
            return None
        return {
            'studentName': self.session.student_name,
            'schoolId': self.session.student_id,
            'answers': list(self.result.answers),
            'results': self.result.to_dict(),
            'questions': [q.to_dict() for q in self.questions],
        }

    # --- timers ---

    def _schedule(self, delay, callback, *args):
        return self._scheduler.call_later(delay, self._fire, self._generation, callback, args)

    def _fire(self, generation, callback, args):
        if generation != self._generation or self.phase is not ExamPhase.IN_PROGRESS:
            log.debug(f"Dropping stale timer event {callback.__name__}")
            return
        try:
            callback(*args)
        except Exception:
            log.exception(f"Error in timer event {callback.__name__}")
            self._notify("Timer error", 'error')

    def _start_question(self, now_ms):
        self._cancel(self._question_handle)
        self._cancel(self._grace_handle)
        self._grace_handle = None
        self.session.question_started_at_ms = now_ms
        self._question_time_left = self.config.time_per_question
        self._question_handle = self._schedule(self.config.tick_interval, self._on_question_tick,
                                               self.session.current_index)

    def _close_question(self, now_ms):
        index = self.session.current_index
        if index < self.total_questions:
            self.session.time_spent[index] += max(0, (now_ms - self.session.question_started_at_ms) // 1000)

    def _on_question_tick(self, index):
        if index != self.session.current_index:
            return
        self._question_time_left -= 1
        if self._question_time_left > 0:
            self._question_handle = self._schedule(self.config.tick_interval, self._on_question_tick, index)
            self._emit()
            return

        self._question_time_left = 0
        self._question_handle = None
        if self.session.answers[index] is None:
            self.session.answers[index] = UNANSWERED
        if index == self.total_questions - 1:
            self._notify("Time's up! Submitting exam...", 'warning')
            self._finish()
        else:
            self._notify("Time's up! Moving to next question...", 'warning')
            self._grace_handle = self._schedule(self.config.grace_delay, self._on_grace_elapsed, index)
            self._emit()

    def _on_grace_elapsed(self, index):
        self._grace_handle = None
        # The student may already have moved on during the grace period
        if index == self.session.current_index:
            self.advance()

    def _on_total_tick(self):
        if self._total_remaining() <= 0:
            self._notify("Exam time is over! Submitting exam...", 'warning')
            self._finish()
            return
        self._total_handle = self._schedule(self.config.tick_interval, self._on_total_tick)
        self._emit()

    def _total_remaining(self):
        elapsed = (self._now_ms() - self.session.started_at_ms) // 1000
        return self.total_time - elapsed

    def _cancel(self, handle):
        if handle is not None:
            handle.cancel()

    def _stop_timers(self):
        # Safe to call with nothing running
        for handle in (self._question_handle, self._grace_handle, self._total_handle):
            self._cancel(handle)
        self._question_handle = self._grace_handle = self._total_handle = None

    # --- finishing ---

    def _finish(self):
        if self.phase is not ExamPhase.IN_PROGRESS:
            return
        self._stop_timers()
        self._generation += 1
        now_ms = self._now_ms()
        self._close_question(now_ms)
        self.result = calculate_result(self.session, self.questions, now_ms)
        self.session.current_index = self.total_questions
        self.phase = ExamPhase.FINISHED
        log.info(f"Exam finished for {self.session.student_id}: score {self.result.score} "
                 f"({self.result.correct_answers}/{self.result.total_questions}, "
                 f"{self.result.unanswered_questions} unanswered) in {self.result.time_taken}s")
        self._emit()
        self._deliver()

    def _deliver(self):
        if self._results_sink is None:
            return
        payload = self.results_payload()
        generation = self._generation
        if isinstance(self._scheduler, asyncio.AbstractEventLoop):
            # The sink may block on the network, so it runs off the loop
            loop = self._scheduler
            if inspect.iscoroutinefunction(self._results_sink):
                future = loop.create_task(self._results_sink(payload))
            else:
                future = loop.run_in_executor(None, self._results_sink, payload)
            future.add_done_callback(lambda f: self._on_delivered(generation, payload, f))
            return
        try:
            exam_session_id = self._results_sink(payload)
        except Exception as e:
            self._delivery_failed(payload, e)
            return
        self._delivery_succeeded(exam_session_id)

    def _on_delivered(self, generation, payload, future):
        if generation != self._generation:
            log.info(f"Discarding results acknowledgement for {payload['schoolId']}: exam was restarted")
            return
        if future.cancelled():
            self._delivery_failed(payload, asyncio.CancelledError())
            return
        error = future.exception()
        if error is not None:
            self._delivery_failed(payload, error)
            return
        self._delivery_succeeded(future.result())

    def _delivery_succeeded(self, exam_session_id):
        self.exam_session_id = exam_session_id
        log.info(f"Exam results stored: {exam_session_id}")
        self._notify("Results saved to database successfully!", 'success')

    def _delivery_failed(self, payload, error):
        # Local results stay available; the exam is complete for the student
        self.submission_error = error
        log.error(f"Error storing exam results for {payload['schoolId']}: {error}", exc_info=error)
        self._notify("Failed to save results to database", 'error')

    # --- plumbing ---

    def _now_ms(self):
        return int(self._clock() * 1000)

    def _notify(self, message, level='info'):
        log_method = {'warning': log.warning, 'error': log.error}.get(level, log.info)
        log_method(message)
        if self._notifier is None:
            return
        try:
            self._notifier(message, level)
        except Exception:
            log.exception("Error showing notification")

    def _emit(self):
        if not self._listeners:
            return
        view = self.view()
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception:
                log.exception("Error rendering exam view")

# timed_exam/questions.py
from dataclasses import dataclass
from typing import Tuple

OPTIONS_PER_QUESTION = 4


@dataclass(frozen=True)
class Question:
    id: int
    prompt: str
    options: Tuple[str, ...]
    correct_option_index: int

    def __post_init__(self):
        # Normalize lists coming from JSON into an immutable tuple
        object.__setattr__(self, 'options', tuple(str(opt) for opt in self.options))
        if len(self.options) != OPTIONS_PER_QUESTION:
            raise ValueError(f"Question {self.id} must have {OPTIONS_PER_QUESTION} options, got {len(self.options)}")
        if not 0 <= self.correct_option_index < OPTIONS_PER_QUESTION:
            raise ValueError(f"Question {self.id} has correct option index {self.correct_option_index} out of range")

    @classmethod
    def from_dict(cls, data):
        """Builds a Question from its wire form ({id, question, options, correctAnswer})."""
        prompt = data.get('question', data.get('prompt'))
        correct = data.get('correctAnswer', data.get('correctOptionIndex'))
        if prompt is None or correct is None:
            raise ValueError(f"Question payload is missing text or correct answer: {data!r}")
        return cls(id=int(data['id']), prompt=str(prompt), options=data['options'],
                   correct_option_index=int(correct))

    def to_dict(self):
        return {
            'id': self.id,
            'question': self.prompt,
            'options': list(self.options),
            'correctAnswer': self.correct_option_index,
        }


REFERENCE_QUESTIONS = (
    Question(1, "What is the capital of France?", ("London", "Berlin", "Paris", "Madrid"), 2),
    Question(2, "Which planet is known as the Red Planet?", ("Venus", "Mars", "Jupiter", "Saturn"), 1),
    Question(3, "What is the largest ocean on Earth?", ("Atlantic", "Indian", "Arctic", "Pacific"), 3),
    Question(4, "Who wrote 'Romeo and Juliet'?",
             ("Charles Dickens", "William Shakespeare", "Jane Austen", "Mark Twain"), 1),
    Question(5, "What is the chemical symbol for gold?", ("Ag", "Au", "Fe", "Cu"), 1),
    Question(6, "Which year did World War II end?", ("1943", "1944", "1945", "1946"), 2),
    Question(7, "What is the square root of 144?", ("10", "11", "12", "13"), 2),
    Question(8, "Which country is home to the kangaroo?", ("New Zealand", "South Africa", "Australia", "India"), 2),
    Question(9, "What is the main component of the sun?",
             ("Liquid lava", "Molten iron", "Hydrogen gas", "Solid rock"), 2),
    Question(10, "How many sides does a hexagon have?", ("5", "6", "7", "8"), 1),
)

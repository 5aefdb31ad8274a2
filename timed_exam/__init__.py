"""Timed multiple-choice exam: session controller and results backend."""

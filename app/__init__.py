"""Hackathon judging portal: rubric scoring, evaluation store and result aggregation."""

__version__ = "1.0.0"

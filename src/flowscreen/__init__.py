"""Screening flow engine and webhook outbox for recruiting backends."""

__version__ = "0.1.0"

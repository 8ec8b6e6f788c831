"""
Monk Manager
============

Command-line assistant that turns questions and source files into
AI-generated explanations.
"""

__version__ = "0.3.0"

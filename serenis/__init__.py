"""ACT Socratic ritual service: session flow, history and AI questions."""

__version__ = "0.1.0"

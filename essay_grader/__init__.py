"""Essay grading backend (申论批改): FastAPI app, grading pipeline and HTTP client."""

__version__ = "1.0.0"

"""Sign in with Google example: FastAPI front-end over Google Sign-In and Firebase Authentication."""

__version__ = "0.1.0"

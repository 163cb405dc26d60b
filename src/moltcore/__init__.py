"""moltcore: session orchestration core for tool-using AI agents."""

__version__ = "0.1.0"

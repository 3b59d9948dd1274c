"""Story Image Studio - generate an image from a prompt, then keep editing it."""

__version__ = "0.1.0"

"""SubStitch: chunked speech transcription stitched into an editable subtitle timeline."""

__version__ = "0.1.0"

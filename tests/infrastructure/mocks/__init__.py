"""In-memory stand-ins for the codec and encoder seams."""

"""Single version source for the console."""

VERSION = "1.0.0"

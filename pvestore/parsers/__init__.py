"""Typed parsers for command output and persisted host files.

Each parser turns one source format into model objects and raises
ParseError when the input does not have the expected shape.
"""

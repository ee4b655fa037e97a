"""Tests for contracts package.

Contract records cross the engine boundary as plain data, so these tests pin
their wire shapes (``to_dict()``) and their small pieces of behaviour such as
signature diffs and trace round-tripping.
"""

"""
Root pytest configuration.

Placing a conftest at the repository root makes pytest add the root to
``sys.path``, so test modules can import shared helpers from
``tests.fixtures``.
"""

"""
Hook Configuration - Test Suite Package.

Pytest suites for the configuration core, one module per component,
plus command-line tests marked ``cli``.
"""

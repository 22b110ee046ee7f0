"""Clinical observation alert engine.

This package contains the rule matching, risk scoring and alert lifecycle
logic, isolated from any concrete data store for easy testing and reasoning.
"""

"""
Test support utilities for filemover tests.

Scripted fakes for the pipeline capabilities live in ``fakes``; they don't
fit as pytest fixtures because tests configure them per scenario.
"""

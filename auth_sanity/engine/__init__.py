"""Sequence execution and dependency engine.

Sequences are registered with ``registry.SequenceRegistry``, ordered into a
plan by ``SequenceRegistry.plan()``, and executed by
``runner.RunCoordinator`` against a shared ``state.InstanceState``.
"""

"""greytone.core — Foundation layer.

Contains the colour model, palette builder, shared types, configuration, and
report builder. This module has NO dependencies on greytone.policies,
greytone.registry or the engine modules above it.
Only stdlib, numpy, and PIL are allowed here.
"""

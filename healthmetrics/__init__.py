"""Health-metrics derivation and reconciliation pipeline.

Turns free-text-labelled measurement history into a bounded inference payload
and reconciles the untrusted inference output into a canonical analysis result.
"""

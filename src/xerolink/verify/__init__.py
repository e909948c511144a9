"""Drift detection between stored and live data."""

from .drift import DriftVerifier, Mismatch, VerificationReport, summarize


__all__ = ["DriftVerifier", "Mismatch", "VerificationReport", "summarize"]

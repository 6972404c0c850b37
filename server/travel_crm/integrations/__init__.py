"""Clients for external services."""

from .midtrans import MidtransClient, MidtransError, compute_signature, verify_signature

__all__ = ["MidtransClient", "MidtransError", "compute_signature", "verify_signature"]

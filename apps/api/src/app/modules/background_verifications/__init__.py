"""
Background verifications module.

Verifiers request background checks on students from other institutes.
Students answer with referee contacts; each referee gets a 1:1 chat with the
requesting verifier, and referees without an account are brought in through
a magic link.
"""

from app.modules.background_verifications.jobs import register_background_verification_jobs
from app.modules.background_verifications.router import router

__all__ = ["router", "register_background_verification_jobs"]

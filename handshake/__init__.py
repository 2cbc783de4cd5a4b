"""
Loan Handshake - Source Package

Digital-handshake verification for informal family loans: the person who
records a loan shares a one-time code, and the other party confirms the
record from a web page without installing the app.

DESIGN PRINCIPLES:
1. Recorder asserts → Counterparty confirms → Store stamps
2. A code confirms at most once
3. No silent corrections of recorded identity
4. Every outcome is a structured result and is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "FamilyKnows Team"

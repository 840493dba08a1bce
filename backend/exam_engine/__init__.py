"""
Exam session engine: server-side lifecycle, timing and scoring of exam attempts.
"""

"""
RapidTriage - Backend Application Package

This package contains the emergency triage backend:
- API routes for audio and text emergency reports
- Extraction of structured situations via generative models
- Classification, tool dispatch and responder summaries
"""

__version__ = "0.1.0"

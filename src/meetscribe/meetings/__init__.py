"""Meeting capabilities -- schemas, storage, attribution and lifecycle.

Provides the data layer (Pydantic schemas, SQLAlchemy models, the SQL and
in-memory repositories), speaker attribution, speech-to-text, and the
MeetingOrchestrator that drives a meeting from live ingestion through
artifact extraction to document export.
"""

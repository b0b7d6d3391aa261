"""Post-meeting pipeline -- artifact extraction and document export.

ArtifactExtractor derives summary, key topics, decisions, action items,
open questions and risks from a finished transcript using per-language
keyword patterns. GoogleDocsExporter pushes the result to Google Docs
(or a local file in mock mode).
"""

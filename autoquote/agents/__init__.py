"""Collaborators at the edge of the pipeline: AI extraction, spreadsheets, mail."""

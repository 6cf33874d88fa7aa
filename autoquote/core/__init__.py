"""Shared configuration, logging, errors, models and persistence."""

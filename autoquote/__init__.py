"""
AutoQuote - automated RFQ email quoting pipeline

Packages:
    core/       Paths, configuration, logging, errors, models and the SQLite store
    knowledge/  Product-name similarity, catalog matching and quantity pricing
    agents/     External collaborators (AI extractor, spreadsheets, IMAP, SMTP)
    forms/      Quotation PDF rendering
    auto/       Extraction normalizer, routing engine, quote assembly, sweep driver
    api/        Flask routes: cron trigger, admin stats, review queue, manual RFQ
"""

__version__ = "1.0.0"

"""Quotation document rendering."""

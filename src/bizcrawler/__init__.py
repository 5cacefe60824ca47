"""Crawl a website and derive a business-profile analysis of each page with an LLM."""

__version__ = "0.1.0"

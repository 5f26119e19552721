"""Utility modules for PoliteCrawl."""

from .urls import domain_matches, extract_host, normalize_url, request_path, url_authority

__all__ = ["domain_matches", "extract_host", "normalize_url", "request_path", "url_authority"]

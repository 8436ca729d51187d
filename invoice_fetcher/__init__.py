"""
Invoice Fetcher - download EDP invoices and raw messages from Gmail
"""

__version__ = "0.1.0"

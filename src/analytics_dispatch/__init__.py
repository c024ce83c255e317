"""
Analytics Dispatch - analytics event delivery with hidden data redaction.

Routes batches of analytics events to BigQuery inline, in the background or
after a maintenance window, and scrubs hidden data before anything is logged.
"""

__version__ = "0.1.0"

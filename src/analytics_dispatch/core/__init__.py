"""
Core dispatch components.

This package contains the delivery pipeline:
- Hidden data redaction
- Dispatch mode selection
- Dispatcher and debug tap
- Background scheduler
- BigQuery backend clients
- Initialisation event and debug event matching
"""

"""
Calendly / Shopify → Sendy Sync - Core Package

This package contains the functionality for pushing people who booked a
Calendly appointment or bought from a Shopify store into a Sendy email list,
either live from the Calendly webhook or from periodic batch sync runs.

Core modules:
- main: Command line entry point for the batch sync runs
- sync: Per-record sync pipeline (cache check → status check → bulk subscribe)
- calendly_client / shopify_client / sendy_client: Remote API clients
- cache: In-memory TTL cache and persistent JSON file cache
- report: Sync report aggregation and writing
- webhook: Calendly webhook receiver
- diagnostics: Connection checks, list summaries and booking analytics
"""

__version__ = "1.0.0"

# Make modules available for import
__all__ = [
    'main',
    'sync',
    'calendly_client',
    'shopify_client',
    'sendy_client',
    'cache',
    'report',
    'webhook',
    'diagnostics'
]

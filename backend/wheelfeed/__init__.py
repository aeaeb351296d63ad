"""
WheelFeed importer backend.

Pulls the vendor wheel feed over SFTP and reconciles it into the catalog:
- Two-phase import (fetch once, then process in small batches)
- Resumable run state for drivers that poll and advance
- Category policy and broken image reporting
"""

__version__ = "1.0.0"

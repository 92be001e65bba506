"""
HTTP and WebSocket routers.

- orders: stage transitions, regressions, archive/restore, measurements
- accounts: deletion check and guarded delete
- audit: entity history and recent entries
- reports: production and sales reports with CSV/XLSX/PDF export
- system: health probe and WebSocket discovery
- kiosk: the /ws/kiosk push feed

order_tracker.api.main mounts the REST routers under /api/v1.
"""

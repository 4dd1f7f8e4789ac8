"""Messenger and Instagram messaging services.

Submodule Structure:
    social/
    ├── signature.py          - X-Hub-Signature-256 and hub.challenge checks
    ├── normalizers.py        - raw webhook events -> canonical events
    ├── idempotency.py        - per-event ledger (begin / finish / sweep)
    ├── dispatcher.py         - webhook fan-out to the handlers below
    ├── conversations.py      - conversation resolution and unified mirror
    ├── messages.py           - message persistence
    ├── receipts.py           - delivery and read watermarks
    ├── thread_control.py     - Handover Protocol state machine
    ├── rate_limit.py         - Instagram hourly send window
    ├── outbound.py           - gated outbound sends
    ├── comment_automation.py - comment-to-DM rules and story mentions
    ├── platform_client.py    - Graph API client
    └── observability.py      - Prometheus counters
"""

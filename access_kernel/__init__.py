"""
Access Kernel - credential lifecycle and verification engine.

Governs physical access to a multi-tenant office building:
- Visitor and employee requests with an explicit approval state machine
- Time-bounded, usage-limited credentials minted only on approval
- A verification gate that records every entry/exit attempt
- An append-only, hash-chained audit trail of access records
"""

__version__ = "0.1.0"

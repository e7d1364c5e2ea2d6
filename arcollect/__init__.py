"""
arcollect: AR collections assistant.

A model-driven orchestrator that calls ERP tools served by a separate
provider process over stdio JSON-RPC.
"""

__version__ = "0.1.0"

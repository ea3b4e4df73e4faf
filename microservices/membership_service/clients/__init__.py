"""
Membership Service Clients Module

HTTP clients for synchronous communication with other services.
"""

from .invoice_client import InvoiceServiceClient

__all__ = ["InvoiceServiceClient"]

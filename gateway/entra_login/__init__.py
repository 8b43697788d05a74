"""
Entra ID login gateway.

A FastAPI service that federates login to Microsoft Entra ID and hands the
client application a local session JWT.
"""

__version__ = "1.0.0"

"""
                Restaurant Tenant Platform

Tenant onboarding and per-request tenant authorization for the
multi-tenant restaurant ordering platform, with the hybrid Mock/Real
service architecture.

Author: Khalil_Bannouri
Version: 4.0.0
License: MIT
"""

__version__ = "4.0.0"
__author__ = "Khalil_Bannouri"

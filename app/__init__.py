"""
                Restaurant Table & Order Lifecycle Service

Backend for dine-in, takeaway and delivery ordering with QR-bound tables,
compensating order placement and a reservation approval workflow.

Author: Khalil_Bannouri
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Khalil_Bannouri"

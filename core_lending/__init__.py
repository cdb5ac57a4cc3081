"""
Core Lending Engine

Loan schedule generation, payment reallocation and schedule harmonization
for microfinance loans, with Decimal money math throughout.
"""

__version__ = "1.0.0"

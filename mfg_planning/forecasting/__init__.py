"""Demand forecasting with ML / historical fallback."""

"""
RiskWise
Shared SQLAlchemy handle.

Usage:
    from riskwise.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

"""
FMS Execution Engine
SQLAlchemy extension instance shared by every model module.

Usage:
    from fms.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

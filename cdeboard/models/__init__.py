"""
CDE Decision Support Platform
SQLAlchemy models package.

All model modules import ``db`` from here so that a single
``SQLAlchemy`` instance is bound by the app factory.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

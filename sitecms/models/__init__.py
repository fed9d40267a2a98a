"""
sitecms
Database handle shared by all models.

Models register themselves on ``db.metadata`` when their module is imported;
``create_app`` imports every model module before ``db.create_all()``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
